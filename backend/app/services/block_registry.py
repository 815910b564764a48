"""
Block Registry: validation and CRUD lifecycle of stone blocks
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import (AlreadyDispatchedError, BlobError, InventoryError,
                             NotFoundError, StorageError, ValidationError)
from app.core.logging_config import LoggingConfig
from app.core.metrics import blocks_registered_total, blocks_removed_total
from app.models.stone_block import OUT_OF_STOCK, BlockStatus, StoneBlock
from app.services.blob_store import LocalBlobStore
from app.services.identity_token_service import IdentityTokenIssuer
from app.utils.datetime_utils import utc_now

logger = LoggingConfig.get_logger(__name__)

# Columns that may never hold NULL once a block exists
_REQUIRED_FIELDS = (
    "name", "dimensions", "category", "subcategory",
    "price", "price_unit", "stock_availability",
)


def _reject_reserved_availability(value: Optional[str]) -> Optional[str]:
    if value is not None and value.casefold() == OUT_OF_STOCK.casefold():
        raise ValueError(f"'{OUT_OF_STOCK}' is set only by dispatching the block")
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class BlockFields(BaseModel):
    """Fields accepted when registering a block"""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=255)
    dimensions: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., ge=0, allow_inf_nan=False)
    price_unit: str = Field(..., min_length=1, max_length=50)
    stock_availability: str = Field(..., min_length=1, max_length=50)
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    grade: Optional[str] = Field(default=None, max_length=100)

    @field_validator("stock_quantity", "grade", mode="before")
    @classmethod
    def blank_optional_to_none(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("stock_availability")
    @classmethod
    def validate_stock_availability(cls, v: str) -> str:
        return _reject_reserved_availability(v)


class BlockUpdate(BaseModel):
    """Fields an edit may change; identity and blob references are fixed"""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    dimensions: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    subcategory: Optional[str] = Field(default=None, min_length=1, max_length=100)
    price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    price_unit: Optional[str] = Field(default=None, min_length=1, max_length=50)
    stock_availability: Optional[str] = Field(default=None, min_length=1, max_length=50)
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    grade: Optional[str] = Field(default=None, max_length=100)
    status: Optional[BlockStatus] = None

    @field_validator("stock_quantity", "grade", mode="before")
    @classmethod
    def blank_optional_to_none(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("stock_availability")
    @classmethod
    def validate_stock_availability(cls, v: Optional[str]) -> Optional[str]:
        return _reject_reserved_availability(v)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[BlockStatus]) -> Optional[BlockStatus]:
        if v is not None and v not in BlockStatus.available():
            raise ValueError("blocks are dispatched only by scanning their QR code")
        return v


def _raise_field_error(exc: PydanticValidationError) -> None:
    """Translate the first pydantic error into a ValidationError naming the field"""
    error = exc.errors()[0]
    loc = error.get("loc") or ("fields",)
    field_name = ".".join(str(part) for part in loc)
    raise ValidationError(field_name, error.get("msg", "invalid value")) from None


@dataclass
class RemovalResult:
    """Outcome of removing a block"""
    block_id: UUID
    released: List[str] = field(default_factory=list)
    release_failures: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.release_failures


class BlockRegistry:
    """Registry owning the StoneBlock lifecycle"""

    def __init__(
        self,
        db: Session,
        blob_store: LocalBlobStore,
        issuer: Optional[IdentityTokenIssuer] = None,
    ):
        self.db = db
        self.blob_store = blob_store
        self.issuer = issuer or IdentityTokenIssuer(blob_store)
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Validation (no side effects)
    # ------------------------------------------------------------------

    def validate_registration(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validate and coerce registration fields

        Args:
            fields: Raw field values (strings from a form, or typed values)

        Returns:
            Clean field dictionary with grade defaulted

        Raises:
            ValidationError: naming the first offending field
        """
        try:
            data = BlockFields.model_validate(dict(fields)).model_dump()
        except PydanticValidationError as e:
            _raise_field_error(e)
        if data["grade"] is None:
            data["grade"] = self.settings.default_grade
        return data

    def validate_image(self, image_bytes: Optional[bytes]) -> bytes:
        if not image_bytes:
            raise ValidationError("image", "a photo of the block is required")
        if len(image_bytes) > self.settings.max_image_bytes:
            raise ValidationError(
                "image", f"photo exceeds {self.settings.max_image_bytes} bytes"
            )
        return image_bytes

    def validate_update(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate a partial edit; returns only the fields being changed"""
        try:
            changes = BlockUpdate.model_validate(dict(fields)).model_dump(exclude_unset=True)
        except PydanticValidationError as e:
            _raise_field_error(e)

        for name in _REQUIRED_FIELDS:
            if name in changes and changes[name] is None:
                raise ValidationError(name, "must not be empty")
        if "grade" in changes and changes["grade"] is None:
            changes["grade"] = self.settings.default_grade
        if changes.get("status") is not None:
            changes["status"] = changes["status"].value
        elif "status" in changes:
            raise ValidationError("status", "must not be empty")
        return changes

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register(
        self,
        fields: Mapping[str, Any],
        image_bytes: Optional[bytes],
        image_extension: str = "",
    ) -> StoneBlock:
        """
        Register a new block

        Validates everything first, then issues the identity token and QR
        artifact, stores the photo and persists the block. If anything after
        validation fails, blobs written by this call are released and no
        block is saved.

        Args:
            fields: Block fields
            image_bytes: Photo of the block
            image_extension: Extension hint for the stored photo

        Returns:
            Persisted StoneBlock with status Registered
        """
        data = self.validate_registration(fields)
        image_bytes = self.validate_image(image_bytes)

        written: List[str] = []
        try:
            identity = self.issuer.issue(data)
            written.append(identity.artifact_ref)

            # Salted with the token so every block owns its photo blob
            image_ref = self.blob_store.store(
                image_bytes, extension=image_extension, salt=identity.token
            )
            written.append(image_ref)

            block = StoneBlock(
                identity_token=identity.token,
                identity_artifact_ref=identity.artifact_ref,
                image_ref=image_ref,
                status=BlockStatus.REGISTERED.value,
                **data,
            )
            self.db.add(block)
            self.db.commit()
        except InventoryError:
            self.db.rollback()
            self._discard_blobs(written)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            self._discard_blobs(written)
            logger.error(
                "Failed to persist stone block",
                exc_info=True,
                extra={"block_name": data["name"], "error": str(e)}
            )
            raise StorageError("Failed to save stone block", cause=e) from e

        self.db.refresh(block)
        blocks_registered_total.labels(category=block.category).inc()
        logger.info(
            f"Registered stone block: {block.name}",
            extra={
                "block_id": str(block.id),
                "block_name": block.name,
                "artifact_ref": block.identity_artifact_ref,
            }
        )
        return block

    def _discard_blobs(self, references: List[str]) -> None:
        """Release blobs written by a failed registration"""
        for reference in references:
            try:
                self.blob_store.release(reference)
            except BlobError:
                logger.warning(
                    "Orphaned blob after failed registration",
                    extra={"blob_ref": reference}
                )

    def list(self) -> List[StoneBlock]:
        """All blocks, unfiltered, in storage order"""
        return self.db.query(StoneBlock).all()

    def get(self, block_id: Union[UUID, str]) -> StoneBlock:
        """Get block by ID; NotFoundError if absent"""
        block_id = self._coerce_id(block_id)
        block = self.db.query(StoneBlock).filter(StoneBlock.id == block_id).first()
        if block is None:
            raise NotFoundError(f"Stone block {block_id} not found")
        return block

    def get_by_token(self, token: str) -> StoneBlock:
        """Get block by identity token; NotFoundError if absent"""
        token = (token or "").strip()
        block = None
        if token:
            block = self.db.query(StoneBlock).filter(StoneBlock.identity_token == token).first()
        if block is None:
            raise NotFoundError("No stone block matches this QR code")
        return block

    def update(self, block_id: Union[UUID, str], fields: Mapping[str, Any]) -> StoneBlock:
        """
        Edit descriptive fields or move a block between available states

        The write only matches rows that are not dispatched, so an edit racing
        a dispatch scan can never undo it.

        Raises:
            ValidationError, NotFoundError, AlreadyDispatchedError
        """
        block_id = self._coerce_id(block_id)
        changes = self.validate_update(fields)
        if not changes:
            return self.get(block_id)

        changes["updated_at"] = utc_now()
        try:
            updated = (
                self.db.query(StoneBlock)
                .filter(
                    StoneBlock.id == block_id,
                    StoneBlock.status != BlockStatus.DISPATCHED.value,
                )
                .update(changes, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to update stone block", exc_info=True, extra={"block_id": str(block_id)})
            raise StorageError("Failed to update stone block", cause=e) from e

        if not updated:
            self.get(block_id)
            raise AlreadyDispatchedError(f"Stone block {block_id} has been dispatched and can no longer be edited")

        logger.info(
            "Updated stone block",
            extra={"block_id": str(block_id), "updated_fields": sorted(changes)}
        )
        return self.get(block_id)

    def remove(self, block_id: Union[UUID, str]) -> RemovalResult:
        """
        Delete a block, then release its photo and QR artifact

        The row is deleted first; blob release failures are reported in the
        result rather than undoing the deletion.
        """
        block = self.get(block_id)
        block_id = block.id
        artifact_ref = block.identity_artifact_ref
        image_ref = block.image_ref

        try:
            self.db.delete(block)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to delete stone block", exc_info=True, extra={"block_id": str(block_id)})
            raise StorageError("Failed to remove stone block", cause=e) from e

        blocks_removed_total.inc()
        result = RemovalResult(block_id=block_id)

        for reference in (artifact_ref, image_ref):
            try:
                self.blob_store.release(reference)
                result.released.append(reference)
            except BlobError:
                result.release_failures.append(reference)

        if result.release_failures:
            logger.warning(
                "Stone block removed but some blobs were not released",
                extra={"block_id": str(block_id), "release_failures": result.release_failures}
            )
        else:
            logger.info("Removed stone block", extra={"block_id": str(block_id)})
        return result

    @staticmethod
    def _coerce_id(block_id: Union[UUID, str]) -> UUID:
        if isinstance(block_id, UUID):
            return block_id
        try:
            return UUID(str(block_id))
        except ValueError:
            raise ValidationError("id", "not a valid block id") from None
