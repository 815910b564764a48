"""
Stone block model
A physical block tracked from registration to dispatch
"""
from enum import Enum
from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import (CheckConstraint, Column, DateTime, Float, Index,
                        Integer, String, UniqueConstraint, Uuid)

from app.core.database import Base
from app.utils.datetime_utils import utc_now


class BlockStatus(str, Enum):
    """Block lifecycle status"""
    REGISTERED = "Registered"
    IN_WAREHOUSE = "In Warehouse"
    DISPATCHED = "Dispatched"

    @classmethod
    def available(cls):
        """States from which a block can still be dispatched"""
        return (cls.REGISTERED, cls.IN_WAREHOUSE)


IN_STOCK = "In Stock"
OUT_OF_STOCK = "Out of Stock"


class StoneBlock(Base):
    """Stone block model - one physical block bound to a QR identity token"""
    __tablename__ = "stone_blocks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Identity
    identity_token = Column(String(64), nullable=False)
    identity_artifact_ref = Column(String(255), nullable=False)

    # Description
    name = Column(String(255), nullable=False)
    dimensions = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False)  # colour / pattern
    subcategory = Column(String(100), nullable=False)  # product type
    grade = Column(String(100), nullable=False, default="Standard")
    image_ref = Column(String(255), nullable=False)

    # Pricing and stock
    price = Column(Float, nullable=False)
    price_unit = Column(String(50), nullable=False)
    stock_availability = Column(String(50), nullable=False)
    stock_quantity = Column(Integer, nullable=True)

    # Lifecycle
    status = Column(String(50), nullable=False, default=BlockStatus.REGISTERED.value)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("identity_token", name="uq_stone_blocks_identity_token"),
        CheckConstraint("price >= 0", name="stone_blocks_price_check"),
        CheckConstraint(
            "stock_quantity IS NULL OR stock_quantity >= 0",
            name="stone_blocks_stock_quantity_check"
        ),
        Index("ix_stone_blocks_status", "status"),
        Index("ix_stone_blocks_category", "category"),
        Index("ix_stone_blocks_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<StoneBlock(id={self.id}, name={self.name}, status={self.status})>"

    @property
    def is_dispatched(self) -> bool:
        return self.status == BlockStatus.DISPATCHED.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert block to dictionary"""
        return {
            "id": str(self.id),
            "identity_token": self.identity_token,
            "identity_artifact_ref": self.identity_artifact_ref,
            "name": self.name,
            "dimensions": self.dimensions,
            "category": self.category,
            "subcategory": self.subcategory,
            "grade": self.grade,
            "image_ref": self.image_ref,
            "price": self.price,
            "price_unit": self.price_unit,
            "stock_availability": self.stock_availability,
            "stock_quantity": self.stock_quantity,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
