"""
API routes for stone blocks: registration, catalog, dispatch
"""
import re
from datetime import datetime
from pathlib import PurePath
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, File, Form, Query, UploadFile
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.permissions import Capability, require_capability
from app.services.blob_store import LocalBlobStore, get_blob_store
from app.services.block_registry import BlockRegistry
from app.services.catalog_query_service import (CatalogCriteria,
                                                CatalogQueryService)
from app.services.dispatch_service import DispatchService

router = APIRouter(prefix="/api/stones", tags=["stones"])

# Field names used by older clients
CAMEL_CASE_FIELDS = {
    "stoneName": "name",
    "priceUnit": "price_unit",
    "stockAvailability": "stock_availability",
    "stockQuantity": "stock_quantity",
}

_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,8}$")


class StoneBlockResponse(BaseModel):
    """Stone block response model"""
    id: UUID
    identity_token: str
    identity_artifact_ref: str
    name: str
    dimensions: str
    category: str
    subcategory: str
    grade: str
    image_ref: str
    price: float
    price_unit: str
    stock_availability: str
    stock_quantity: Optional[int] = None
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RegisterResponse(BaseModel):
    """Identity assigned to a newly registered block"""
    id: UUID
    token: str
    artifact_ref: str
    message: str = "Stone block registered"


class CatalogResponse(BaseModel):
    count: int
    blocks: List[StoneBlockResponse]


class RemoveRequest(BaseModel):
    id: str = Field(..., description="Block ID")


class RemoveResponse(BaseModel):
    status: str
    block_id: UUID
    release_failures: List[str] = Field(default_factory=list)


class DispatchRequest(BaseModel):
    """Scanned QR token; older scanners send it as qrCode"""
    token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("token", "qrCode"),
    )


class DispatchResponse(BaseModel):
    id: UUID
    name: str
    dimensions: str
    status: str
    message: str = "Stone block dispatched"


def _image_extension(filename: Optional[str]) -> str:
    """Lower-case extension of an uploaded file, or "" if unusable"""
    suffix = PurePath(filename or "").suffix.lower().lstrip(".")
    return suffix if _EXTENSION_RE.match(suffix) else ""


def _normalize_field_names(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Map camelCase field names onto their snake_case columns; snake_case wins"""
    normalized = {}
    for key, value in fields.items():
        target = CAMEL_CASE_FIELDS.get(key, key)
        if target in normalized and key != target:
            continue
        normalized[target] = value
    return normalized


@router.post(
    "/add",
    response_model=RegisterResponse,
    dependencies=[Depends(require_capability(Capability.BLOCK_REGISTER))],
)
def add_block(
    image: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    stone_name: Optional[str] = Form(None, alias="stoneName"),
    dimensions: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    subcategory: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    price_unit: Optional[str] = Form(None),
    price_unit_legacy: Optional[str] = Form(None, alias="priceUnit"),
    stock_availability: Optional[str] = Form(None),
    stock_availability_legacy: Optional[str] = Form(None, alias="stockAvailability"),
    stock_quantity: Optional[str] = Form(None),
    stock_quantity_legacy: Optional[str] = Form(None, alias="stockQuantity"),
    grade: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """Register a block from a multipart form with its photo"""
    fields = {
        "name": name if name is not None else stone_name,
        "dimensions": dimensions,
        "category": category,
        "subcategory": subcategory,
        "price": price,
        "price_unit": price_unit if price_unit is not None else price_unit_legacy,
        "stock_availability": (
            stock_availability if stock_availability is not None else stock_availability_legacy
        ),
        "stock_quantity": stock_quantity if stock_quantity is not None else stock_quantity_legacy,
        "grade": grade,
    }
    image_bytes = image.file.read() if image is not None else None
    extension = _image_extension(image.filename) if image is not None else ""

    registry = BlockRegistry(db, blob_store)
    block = registry.register(fields, image_bytes, image_extension=extension)
    return RegisterResponse(
        id=block.id,
        token=block.identity_token,
        artifact_ref=block.identity_artifact_ref,
    )


@router.get("/list", response_model=List[StoneBlockResponse])
def list_blocks(
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """List every block, dispatched ones included"""
    return BlockRegistry(db, blob_store).list()


@router.get("/filter", response_model=CatalogResponse)
def filter_blocks(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", allow_inf_nan=False),
    max_price: Optional[float] = Query(None, alias="maxPrice", allow_inf_nan=False),
    stock_availability: Optional[str] = Query(None, alias="stockAvailability"),
    keywords: Optional[str] = None,
    source: Optional[str] = None,
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    db: Session = Depends(get_db),
):
    """Filter and sort the catalog of available blocks"""
    criteria = CatalogCriteria(
        category=category,
        subcategory=subcategory,
        min_price=min_price,
        max_price=max_price,
        stock_availability=stock_availability,
        keywords=keywords,
        source=source,
        sort_by=sort_by,
    )
    result = CatalogQueryService(db).filter(criteria)
    return CatalogResponse(
        count=result.count,
        blocks=[StoneBlockResponse.model_validate(block) for block in result.blocks],
    )


@router.post(
    "/remove",
    response_model=RemoveResponse,
    dependencies=[Depends(require_capability(Capability.BLOCK_REMOVE))],
)
def remove_block(
    request: RemoveRequest,
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """Delete a block and release its photo and QR artifact"""
    result = BlockRegistry(db, blob_store).remove(request.id)
    return RemoveResponse(
        status="deleted" if result.complete else "deleted_with_orphans",
        block_id=result.block_id,
        release_failures=result.release_failures,
    )


@router.post(
    "/dispatch",
    response_model=DispatchResponse,
    dependencies=[Depends(require_capability(Capability.BLOCK_DISPATCH))],
)
def dispatch_block(
    request: DispatchRequest,
    db: Session = Depends(get_db),
):
    """Dispatch the block whose QR code was scanned"""
    confirmation = DispatchService(db).dispatch(request.token)
    return DispatchResponse(
        id=confirmation.id,
        name=confirmation.name,
        dimensions=confirmation.dimensions,
        status=confirmation.status,
    )


@router.get("/qr/{token}", response_model=StoneBlockResponse)
def get_block_by_token(
    token: str,
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """Look up a block by its scanned QR token"""
    return BlockRegistry(db, blob_store).get_by_token(token)


@router.get("/{block_id}", response_model=StoneBlockResponse)
def get_block(
    block_id: str,
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """Get block by ID"""
    return BlockRegistry(db, blob_store).get(block_id)


@router.patch(
    "/{block_id}",
    response_model=StoneBlockResponse,
    dependencies=[Depends(require_capability(Capability.BLOCK_EDIT))],
)
def update_block(
    block_id: str,
    fields: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """Edit descriptive fields or move a block between Registered and In Warehouse"""
    return BlockRegistry(db, blob_store).update(block_id, _normalize_field_names(fields))
