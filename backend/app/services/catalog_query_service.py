"""
Catalog Query Engine: filter and sort available stone blocks
"""
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import and_, asc, desc, func, or_
from sqlalchemy.orm import Session

from app.core.logging_config import LoggingConfig
from app.core.metrics import catalog_queries_total
from app.models.stone_block import BlockStatus, StoneBlock

logger = LoggingConfig.get_logger(__name__)

ALL = "all"


class SortOrder(str, Enum):
    """Catalog orderings"""
    NEWEST = "newest"
    OLDEST = "oldest"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    NAME_ASC = "name_asc"
    NAME_DESC = "name_desc"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SortOrder":
        """Unknown or missing values fall back to newest first"""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.NEWEST


# Storage-level ordering per sort; name sorts are re-sorted in memory afterwards
_STORAGE_ORDER = {
    SortOrder.NEWEST: desc(StoneBlock.created_at),
    SortOrder.OLDEST: asc(StoneBlock.created_at),
    SortOrder.PRICE_LOW: asc(StoneBlock.price),
    SortOrder.PRICE_HIGH: desc(StoneBlock.price),
    SortOrder.NAME_ASC: asc(StoneBlock.name),
    SortOrder.NAME_DESC: desc(StoneBlock.name),
}


class CatalogCriteria(BaseModel):
    """Optional catalog filters; an absent criterion places no constraint"""
    category: Optional[str] = None
    subcategory: Optional[str] = None
    min_price: Optional[float] = Field(default=None, allow_inf_nan=False)
    max_price: Optional[float] = Field(default=None, allow_inf_nan=False)
    stock_availability: Optional[str] = None
    keywords: Optional[str] = None
    source: Optional[str] = None
    sort_by: Optional[str] = None


@dataclass
class CatalogResult:
    """Matching blocks plus their count"""
    blocks: List[StoneBlock] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.blocks)


def _selected(value: Optional[str]) -> Optional[str]:
    """Exact-match criterion value, or None when blank or 'all'"""
    if value is None:
        return None
    value = value.strip()
    if not value or value.lower() == ALL:
        return None
    return value


def name_collation_key(name: str) -> Tuple[str, str]:
    """
    Case- and accent-insensitive sort key for block names

    Primary: casefolded text with diacritics stripped ("Émeraude" sorts with
    "emeraude"); secondary: casefolded text, so accented forms follow their
    plain spelling.
    """
    folded = unicodedata.normalize("NFKD", name or "").casefold()
    primary = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return primary, folded


class CatalogQueryService:
    """Composes catalog filters and orderings over the block registry (read-only)"""

    def __init__(self, db: Session):
        self.db = db

    def build_conditions(self, criteria: CatalogCriteria) -> List[Any]:
        """
        Build the ANDed filter conditions for criteria

        Dispatched blocks are always excluded. Keywords match any of name,
        dimensions, category or subcategory as a literal case-insensitive
        substring. ``source`` stands in for ``category`` only when no
        category was supplied at all.
        """
        conditions = [StoneBlock.status != BlockStatus.DISPATCHED.value]

        category = _selected(criteria.category)
        if category is None and not (criteria.category or "").strip():
            category = _selected(criteria.source)
        if category is not None:
            conditions.append(StoneBlock.category == category)

        subcategory = _selected(criteria.subcategory)
        if subcategory is not None:
            conditions.append(StoneBlock.subcategory == subcategory)

        if criteria.min_price is not None:
            conditions.append(StoneBlock.price >= criteria.min_price)
        if criteria.max_price is not None:
            conditions.append(StoneBlock.price <= criteria.max_price)

        availability = _selected(criteria.stock_availability)
        if availability is not None:
            conditions.append(StoneBlock.stock_availability == availability)

        keywords = (criteria.keywords or "").strip()
        if keywords:
            needle = keywords.lower()
            conditions.append(or_(*[
                func.lower(column).contains(needle, autoescape=True)
                for column in (
                    StoneBlock.name,
                    StoneBlock.dimensions,
                    StoneBlock.category,
                    StoneBlock.subcategory,
                )
            ]))

        return conditions

    def filter(self, criteria: Optional[CatalogCriteria] = None) -> CatalogResult:
        """
        Filter and sort the catalog

        Name orderings run in two phases: the database orders by name, then
        the rows are re-sorted in memory with ``name_collation_key`` because
        native string ordering is byte/codepoint based on most backends.
        Python's sort is stable, so equal keys keep the database order; rows
        with equal sort keys have no further guaranteed order.

        Args:
            criteria: Filters and sort order; None means the whole catalog

        Returns:
            CatalogResult with the matching blocks
        """
        criteria = criteria or CatalogCriteria()
        sort_order = SortOrder.parse(criteria.sort_by)

        blocks = (
            self.db.query(StoneBlock)
            .filter(and_(*self.build_conditions(criteria)))
            .order_by(_STORAGE_ORDER[sort_order])
            .all()
        )

        if sort_order in (SortOrder.NAME_ASC, SortOrder.NAME_DESC):
            blocks.sort(
                key=lambda block: name_collation_key(block.name),
                reverse=sort_order is SortOrder.NAME_DESC,
            )

        catalog_queries_total.labels(sort_by=sort_order.value).inc()
        logger.debug(
            "Catalog query",
            extra={
                "criteria": criteria.model_dump(exclude_none=True),
                "sort_by": sort_order.value,
                "result_count": len(blocks),
            }
        )
        return CatalogResult(blocks=blocks)
