from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from costing.repositories.stock_repository import StockRepository
from costing.utils import normalize_datetime


def get_recalculation_start_date(old_date: Optional[datetime], new_date: datetime) -> datetime:
    """Earliest date whose allocations an edit moving a document from old_date to new_date can change."""
    new_date = normalize_datetime(new_date)
    if old_date is None:
        return new_date
    old_date = normalize_datetime(old_date)
    return old_date if old_date < new_date else new_date


class BackdateDetector:
    def __init__(self, db: Session):
        self._stock = StockRepository(db)

    def is_backdated(self, product_id: int, candidate_date: datetime) -> bool:
        """True when stock of this product was already allocated to a later-dated line."""
        return self._stock.has_consumption_after(product_id, normalize_datetime(candidate_date))

    def has_consuming_line_from(self, product_id: int, when: datetime) -> bool:
        """True when a sale or purchase return of this product is dated on or after `when`.

        Unlike is_backdated this also sees lines that drew nothing from lots:
        fallback-costed sales and shortfalls a lot dated `when` could feed.
        """
        return self._stock.has_consuming_line_from(product_id, normalize_datetime(when))

    def earliest_zero_cogs_date(self, product_id: int) -> Optional[datetime]:
        return self._stock.earliest_zero_cogs_date(product_id)
