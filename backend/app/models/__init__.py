"""
SQLAlchemy models
"""
from app.core.database import Base  # noqa: F401
# Import all models here so Alembic can detect them
from app.models.stone_block import (IN_STOCK, OUT_OF_STOCK,  # noqa: F401
                                    BlockStatus, StoneBlock)
