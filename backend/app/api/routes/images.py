"""
Blob retrieval for block photos and QR artifacts
"""
import mimetypes

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.services.blob_store import LocalBlobStore, get_blob_store

router = APIRouter(prefix="/images", tags=["images"])


@router.get("/{reference}")
def get_image(
    reference: str,
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """Serve a stored blob by reference"""
    data = blob_store.retrieve(reference)
    media_type = mimetypes.guess_type(reference)[0] or "application/octet-stream"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
