from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, exists, func, select
from sqlalchemy.orm import Session

from costing.models import (
    CONSUMING_KINDS,
    CostAuditLog,
    Document,
    DocumentLine,
    LotSource,
    StockLot,
    StockLotConsumption,
)
from costing.utils import to_decimal


class StockRepository:
    """Lots, consumptions and consuming lines: the only tables the FIFO engine touches."""

    def __init__(self, db: Session, lock_rows: bool = True):
        self._db = db
        self._lock_rows = lock_rows

    # -- lots -----------------------------------------------------------------

    def add_lot(self, lot: StockLot) -> None:
        self._db.add(lot)
        self._db.flush()

    def get_lot(self, lot_id: int) -> Optional[StockLot]:
        return self._db.get(StockLot, lot_id)

    def fifo_lots(
        self,
        product_id: int,
        as_of: Optional[datetime] = None,
        warehouse_id: Optional[int] = None,
        for_update: bool = False,
    ) -> list[StockLot]:
        stmt = select(StockLot).where(
            StockLot.product_id == product_id,
            StockLot.remaining_quantity > 0,
        )
        if as_of is not None:
            stmt = stmt.where(StockLot.lot_date <= as_of)
        if warehouse_id is not None:
            stmt = stmt.where(StockLot.warehouse_id == warehouse_id)
        stmt = stmt.order_by(StockLot.lot_date, StockLot.sequence, StockLot.id)
        if for_update and self._lock_rows:
            stmt = stmt.with_for_update()
        return list(self._db.scalars(stmt.execution_options(populate_existing=True)))

    def lots_for_source_line(self, line_id: int) -> list[StockLot]:
        return list(
            self._db.scalars(
                select(StockLot).where(StockLot.source_line_id == line_id).order_by(StockLot.id)
            )
        )

    def latest_purchase_lot(self, product_id: int) -> Optional[StockLot]:
        return self._db.scalar(
            select(StockLot)
            .where(
                StockLot.product_id == product_id,
                StockLot.source_type == LotSource.PURCHASE.value,
            )
            .order_by(StockLot.lot_date.desc(), StockLot.sequence.desc())
            .limit(1)
        )

    def available_quantity(
        self,
        product_id: int,
        warehouse_id: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(StockLot.remaining_quantity), 0)).where(
            StockLot.product_id == product_id
        )
        if as_of is not None:
            stmt = stmt.where(StockLot.lot_date <= as_of)
        if warehouse_id is not None:
            stmt = stmt.where(StockLot.warehouse_id == warehouse_id)
        return to_decimal(self._db.scalar(stmt))

    def delete_lot(self, lot: StockLot) -> None:
        self._db.delete(lot)
        self._db.flush()

    # -- consumptions ---------------------------------------------------------

    def add_consumption(self, consumption: StockLotConsumption) -> None:
        self._db.add(consumption)
        self._db.flush()

    def consumptions_for_line(self, line_id: int) -> list[StockLotConsumption]:
        return list(
            self._db.scalars(
                select(StockLotConsumption)
                .where(StockLotConsumption.line_id == line_id)
                .order_by(StockLotConsumption.id)
            )
        )

    def consumptions_for_lot(self, lot_id: int) -> list[StockLotConsumption]:
        return list(
            self._db.scalars(
                select(StockLotConsumption)
                .where(StockLotConsumption.lot_id == lot_id)
                .order_by(StockLotConsumption.id)
            )
        )

    def consumed_quantity_for_lot(self, lot_id: int) -> Decimal:
        return to_decimal(
            self._db.scalar(
                select(func.coalesce(func.sum(StockLotConsumption.quantity), 0)).where(
                    StockLotConsumption.lot_id == lot_id
                )
            )
        )

    def delete_consumptions_for_line(self, line_id: int) -> None:
        self._db.execute(delete(StockLotConsumption).where(StockLotConsumption.line_id == line_id))
        self._db.flush()

    def delete_consumptions_for_lot(self, lot_id: int) -> None:
        self._db.execute(delete(StockLotConsumption).where(StockLotConsumption.lot_id == lot_id))
        self._db.flush()

    def consumption_ledger(self, product_id: int) -> list[StockLotConsumption]:
        return list(
            self._db.scalars(
                select(StockLotConsumption)
                .join(DocumentLine, DocumentLine.id == StockLotConsumption.line_id)
                .where(DocumentLine.product_id == product_id)
                .order_by(StockLotConsumption.line_id, StockLotConsumption.id)
            )
        )

    # -- consuming lines ------------------------------------------------------

    def get_line(self, line_id: int) -> Optional[DocumentLine]:
        return self._db.get(DocumentLine, line_id)

    def consuming_lines_from(self, product_id: int, from_date: datetime) -> list[DocumentLine]:
        return list(
            self._db.scalars(
                select(DocumentLine)
                .join(Document, Document.id == DocumentLine.document_id)
                .where(
                    DocumentLine.product_id == product_id,
                    Document.kind.in_(CONSUMING_KINDS),
                    Document.document_date >= from_date,
                )
                .order_by(Document.document_date, Document.id, DocumentLine.id)
            )
        )

    def has_consumption_after(self, product_id: int, when: datetime) -> bool:
        stmt = select(
            exists()
            .where(StockLotConsumption.line_id == DocumentLine.id)
            .where(DocumentLine.document_id == Document.id)
            .where(DocumentLine.product_id == product_id)
            .where(Document.document_date > when)
        )
        return bool(self._db.scalar(stmt))

    def has_consuming_line_from(self, product_id: int, when: datetime) -> bool:
        stmt = select(
            exists()
            .where(DocumentLine.document_id == Document.id)
            .where(DocumentLine.product_id == product_id)
            .where(Document.kind.in_(CONSUMING_KINDS))
            .where(Document.document_date >= when)
        )
        return bool(self._db.scalar(stmt))

    def earliest_consuming_date(self, product_id: int) -> Optional[datetime]:
        return self._db.scalar(
            select(Document.document_date)
            .join(DocumentLine, DocumentLine.document_id == Document.id)
            .where(
                DocumentLine.product_id == product_id,
                Document.kind.in_(CONSUMING_KINDS),
            )
            .order_by(Document.document_date, Document.id)
            .limit(1)
        )

    def earliest_zero_cogs_date(self, product_id: int) -> Optional[datetime]:
        return self._db.scalar(
            select(Document.document_date)
            .join(DocumentLine, DocumentLine.document_id == Document.id)
            .where(
                DocumentLine.product_id == product_id,
                Document.kind.in_(CONSUMING_KINDS),
                DocumentLine.cost_of_goods_sold == 0,
            )
            .order_by(Document.document_date, Document.id)
            .limit(1)
        )

    def product_ids_with_consuming_lines(self) -> list[int]:
        rows = self._db.execute(
            select(DocumentLine.product_id)
            .join(Document, Document.id == DocumentLine.document_id)
            .where(Document.kind.in_(CONSUMING_KINDS))
            .group_by(DocumentLine.product_id)
            .order_by(DocumentLine.product_id)
        ).all()
        return [pid for (pid,) in rows]

    # -- cost audit -----------------------------------------------------------

    def add_cost_audit(self, row: CostAuditLog) -> None:
        self._db.add(row)

    def cost_audit_for_product(self, product_id: int, limit: int = 100) -> list[CostAuditLog]:
        return list(
            self._db.scalars(
                select(CostAuditLog)
                .where(CostAuditLog.product_id == product_id)
                .order_by(CostAuditLog.created_at.desc(), CostAuditLog.id.desc())
                .limit(limit)
            )
        )
