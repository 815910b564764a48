"""
Identity token issuing: unique block tokens rendered as QR artifacts
"""
import io
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import uuid4

import segno

from app.core.config import get_settings
from app.core.errors import EncodingError
from app.core.logging_config import LoggingConfig
from app.services.blob_store import LocalBlobStore
from app.utils.datetime_utils import utc_now_iso

logger = LoggingConfig.get_logger(__name__)

# Level H: readable with up to ~30% of the symbol damaged
QR_ERROR_LEVEL = "h"
PAYLOAD_FIELDS = ("name", "dimensions", "category")


@dataclass(frozen=True)
class IssuedIdentity:
    """A freshly issued token and its stored QR rendering"""
    token: str
    artifact_bytes: bytes
    artifact_ref: str


class IdentityTokenIssuer:
    """Issues block identity tokens and renders them as scannable QR codes"""

    def __init__(self, blob_store: LocalBlobStore, scale: Optional[int] = None, border: Optional[int] = None):
        settings = get_settings()
        self.blob_store = blob_store
        self.scale = scale if scale is not None else settings.qr_scale
        self.border = border if border is not None else settings.qr_border

    @staticmethod
    def new_token() -> str:
        return str(uuid4())

    @staticmethod
    def build_payload(token: str, metadata: Dict[str, Any]) -> str:
        """
        Build the JSON payload encoded into the QR code

        Args:
            token: Identity token
            metadata: Block fields; name, dimensions and category are embedded

        Returns:
            Compact JSON string
        """
        payload = {"token": token}
        for field in PAYLOAD_FIELDS:
            payload[field] = metadata.get(field)
        payload["registeredAt"] = utc_now_iso()
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

    def render(self, payload: str) -> bytes:
        """Render payload as a PNG QR code; EncodingError on failure"""
        try:
            qr = segno.make(payload, error=QR_ERROR_LEVEL, micro=False, boost_error=False)
            buffer = io.BytesIO()
            qr.save(buffer, kind="png", scale=self.scale, border=self.border)
        except (segno.DataOverflowError, ValueError) as e:
            logger.error(
                "Failed to render identity artifact",
                exc_info=True,
                extra={"payload_length": len(payload), "error": str(e)}
            )
            raise EncodingError("Identity artifact could not be rendered") from e
        return buffer.getvalue()

    def issue(self, metadata: Dict[str, Any]) -> IssuedIdentity:
        """
        Issue a new identity token and store its QR artifact

        Tokens are never reused: a failed issue discards its token.

        Args:
            metadata: Block fields embedded in the payload

        Returns:
            IssuedIdentity with token, PNG bytes and blob reference

        Raises:
            EncodingError: payload could not be rendered
            BlobError: artifact could not be stored
        """
        token = self.new_token()
        artifact = self.render(self.build_payload(token, metadata))
        artifact_ref = self.blob_store.store(artifact, extension="png")

        logger.info(
            "Issued identity token",
            extra={"artifact_ref": artifact_ref, "block_name": metadata.get("name")}
        )
        return IssuedIdentity(token=token, artifact_bytes=artifact, artifact_ref=artifact_ref)
