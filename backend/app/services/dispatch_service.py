"""
Dispatch state machine: Registered / In Warehouse -> Dispatched, exactly once
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (AlreadyDispatchedError, NotFoundError,
                             StorageError, ValidationError)
from app.core.logging_config import LoggingConfig
from app.core.metrics import block_dispatch_attempts_total
from app.core.token_locks import TokenLockRegistry, get_token_locks
from app.core.tracing import add_span_attributes, get_tracer
from app.models.stone_block import OUT_OF_STOCK, BlockStatus, StoneBlock
from app.utils.datetime_utils import utc_now

logger = LoggingConfig.get_logger(__name__)


@dataclass(frozen=True)
class DispatchConfirmation:
    """What the scanning clerk sees after a successful dispatch"""
    id: UUID
    name: str
    dimensions: str
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "dimensions": self.dimensions,
            "status": self.status,
        }


class DispatchService:
    """Marks scanned blocks as dispatched"""

    def __init__(self, db: Session, token_locks: Optional[TokenLockRegistry] = None):
        self.db = db
        self.token_locks = token_locks or get_token_locks()
        self.tracer = get_tracer(__name__)

    def dispatch(self, token: str) -> DispatchConfirmation:
        """
        Dispatch the block bound to a scanned QR token

        The status check and the write are one conditional UPDATE
        (``WHERE identity_token = :token AND status != 'Dispatched'``), run
        while holding the token's lock. Two scans of the same block can
        therefore never both succeed, whether they race in this process or
        across processes sharing the database.

        Args:
            token: Identity token read from the QR code

        Returns:
            DispatchConfirmation with id, name, dimensions and status

        Raises:
            ValidationError: token is empty
            NotFoundError: no block carries this token
            AlreadyDispatchedError: block was dispatched before
        """
        token = (token or "").strip()
        if not token:
            raise ValidationError("token", "QR code is required")

        with self.tracer.start_as_current_span("stone_block.dispatch"):
            with self.token_locks.hold(token):
                confirmation = self._mark_dispatched(token)

            if confirmation is None:
                block = (
                    self.db.query(StoneBlock)
                    .filter(StoneBlock.identity_token == token)
                    .first()
                )
                if block is None:
                    block_dispatch_attempts_total.labels(outcome="not_found").inc()
                    logger.info("Dispatch scan for unknown QR code")
                    raise NotFoundError("Block not found with the provided QR code")
                block_dispatch_attempts_total.labels(outcome="already_dispatched").inc()
                logger.warning(
                    "Rejected repeat dispatch",
                    extra={"block_id": str(block.id), "block_name": block.name}
                )
                raise AlreadyDispatchedError("This block has already been dispatched")

            block_dispatch_attempts_total.labels(outcome="dispatched").inc()
            add_span_attributes(block_id=str(confirmation.id))
            logger.info(
                f"Dispatched stone block: {confirmation.name}",
                extra={"block_id": str(confirmation.id), "block_name": confirmation.name}
            )
            return confirmation

    def _mark_dispatched(self, token: str) -> Optional[DispatchConfirmation]:
        """
        Conditional status + availability update

        The confirmation is read inside the update's transaction. Returns
        None when no row was changed.
        """
        try:
            updated = (
                self.db.query(StoneBlock)
                .filter(
                    StoneBlock.identity_token == token,
                    StoneBlock.status != BlockStatus.DISPATCHED.value,
                )
                .update(
                    {
                        "status": BlockStatus.DISPATCHED.value,
                        "stock_availability": OUT_OF_STOCK,
                        "updated_at": utc_now(),
                    },
                    synchronize_session=False,
                )
            )
            confirmation = None
            if updated:
                block = (
                    self.db.query(StoneBlock)
                    .populate_existing()
                    .filter(StoneBlock.identity_token == token)
                    .one()
                )
                confirmation = DispatchConfirmation(
                    id=block.id,
                    name=block.name,
                    dimensions=block.dimensions,
                    status=block.status,
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to dispatch stone block", exc_info=True, extra={"error": str(e)})
            raise StorageError("Failed to record dispatch", cause=e) from e
        return confirmation
