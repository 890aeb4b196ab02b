"""Retroactive FIFO recalculation.

A recalculation first reverses every allocation made for lines dated on or
after ``from_date`` (lots go back to the state they had just before that date)
and then replays those lines in document order through the FIFO engine.
Lines dated earlier are never touched, and replaying the same history twice
yields the same allocations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from costing.db import unit_of_work
from costing.models import CostAuditLog, Document
from costing.repositories.product_repository import ProductRepository
from costing.repositories.stock_repository import StockRepository
from costing.services.fifo_engine import FifoEngine
from costing.utils import normalize_datetime, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineCostChange:
    line_id: int
    old_cogs: Decimal
    new_cogs: Decimal

    @property
    def change_amount(self) -> Decimal:
        return self.new_cogs - self.old_cogs


@dataclass
class RecalculationResult:
    product_id: int
    from_date: datetime
    reason: str
    lines_replayed: int = 0
    changes: list[LineCostChange] = field(default_factory=list)
    line_warnings: dict[int, list[str]] = field(default_factory=dict)

    @property
    def warnings(self) -> list[str]:
        return [w for ws in self.line_warnings.values() for w in ws]

    def warnings_for(self, line_ids: set[int]) -> list[str]:
        return [w for line_id, ws in self.line_warnings.items() if line_id in line_ids for w in ws]


@dataclass
class CostCacheChange:
    product_id: int
    old_cost: Decimal
    new_cost: Decimal


@dataclass
class BatchReport:
    cost_cache_changes: list[CostCacheChange] = field(default_factory=list)
    results: list[RecalculationResult] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def lines_changed(self) -> int:
        return sum(len(r.changes) for r in self.results)


class RecalculationService:
    def __init__(self, db: Session, engine: Optional[FifoEngine] = None):
        self._db = db
        self._engine = engine or FifoEngine(db)
        self._products = ProductRepository(db)
        self._stock = StockRepository(db)

    def recalculate_from_date(
        self,
        product_id: int,
        from_date: datetime,
        reason: str = "recalculation",
        triggered_by: Optional[str] = None,
    ) -> RecalculationResult:
        from_date = normalize_datetime(from_date)
        self._engine.lock_product(product_id)
        result = RecalculationResult(product_id=product_id, from_date=from_date, reason=reason)

        lines = self._stock.consuming_lines_from(product_id, from_date)
        if not lines:
            logger.debug(
                "fifo_recalculation_skipped",
                extra={"product_id": product_id, "from_date": from_date, "reason": reason},
            )
            return result

        for line in lines:
            self._engine.restore_consumptions(line.id)

        for line in lines:
            old_cogs = to_decimal(line.cost_of_goods_sold)
            document = self._db.get(Document, line.document_id)
            fifo = self._engine.cost_line(line, document.document_date)
            new_cogs = fifo.total_cost
            result.lines_replayed += 1
            if fifo.warnings:
                result.line_warnings[line.id] = list(fifo.warnings)

            if old_cogs != new_cogs:
                change = LineCostChange(line_id=line.id, old_cogs=old_cogs, new_cogs=new_cogs)
                result.changes.append(change)
                self._stock.add_cost_audit(
                    CostAuditLog(
                        product_id=product_id,
                        line_id=line.id,
                        old_cogs=old_cogs,
                        new_cogs=new_cogs,
                        change_amount=change.change_amount,
                        reason=reason,
                        triggered_by=triggered_by,
                    )
                )
                logger.info(
                    "cogs_corrected",
                    extra={
                        "product_id": product_id,
                        "line_id": line.id,
                        "old_cogs": old_cogs,
                        "new_cogs": new_cogs,
                        "reason": reason,
                    },
                )

        self._db.flush()
        logger.info(
            "fifo_recalculated",
            extra={
                "product_id": product_id,
                "from_date": from_date,
                "reason": reason,
                "triggered_by": triggered_by,
                "lines_replayed": result.lines_replayed,
                "lines_changed": len(result.changes),
            },
        )
        return result

    def recalculate_product(
        self,
        product_id: int,
        from_date: Optional[datetime] = None,
        reason: str = "manual-recalculation",
        triggered_by: Optional[str] = None,
    ) -> RecalculationResult:
        """Recalculate from from_date, or from the product's first consuming line."""
        start = from_date or self._stock.earliest_consuming_date(product_id)
        if start is None:
            self._engine.lock_product(product_id)
            return RecalculationResult(
                product_id=product_id, from_date=normalize_datetime(None), reason=reason
            )
        return self.recalculate_from_date(product_id, start, reason=reason, triggered_by=triggered_by)

    def refresh_cost_cache(self, product_id: int) -> Optional[CostCacheChange]:
        """Point the product's fallback cost at its latest purchase lot."""
        product = self._engine.lock_product(product_id)
        lot = self._stock.latest_purchase_lot(product_id)
        if lot is None:
            return None
        old_cost = to_decimal(product.cost)
        new_cost = to_decimal(lot.unit_cost)
        if old_cost == new_cost:
            return None
        product.cost = new_cost
        self._db.flush()
        return CostCacheChange(product_id=product_id, old_cost=old_cost, new_cost=new_cost)

    def recalculate_all(
        self,
        product_ids: Optional[list[int]] = None,
        triggered_by: Optional[str] = None,
    ) -> BatchReport:
        """Refresh cost caches, then rebuild every product's history in its own transaction.

        A product that fails is rolled back and reported; the batch carries on.
        """
        report = BatchReport()
        if product_ids is None:
            product_ids = [p.id for p in self._products.list()]

        for product_id in product_ids:
            with unit_of_work(self._db):
                change = self.refresh_cost_cache(product_id)
            if change is not None:
                report.cost_cache_changes.append(change)

        with_sales = set(self._stock.product_ids_with_consuming_lines())
        for product_id in product_ids:
            if product_id not in with_sales:
                continue
            try:
                with unit_of_work(self._db):
                    result = self.recalculate_product(
                        product_id, reason="batch-recalculation", triggered_by=triggered_by
                    )
            except Exception as exc:
                logger.error(
                    "fifo_recalculation_failed",
                    extra={"product_id": product_id},
                    exc_info=True,
                )
                report.failures[product_id] = str(exc)
                continue
            report.results.append(result)

        logger.info(
            "fifo_batch_recalculated",
            extra={
                "products": len(report.results),
                "lines_changed": report.lines_changed,
                "failures": len(report.failures),
                "cost_cache_changes": len(report.cost_cache_changes),
            },
        )
        return report
