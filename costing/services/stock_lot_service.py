from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from costing.exceptions import (
    InvalidDocumentError,
    InvalidQuantityError,
    LineNotFoundError,
    ProductNotFoundError,
    StockLotNotFoundError,
)
from costing.models import LotSource, StockLot
from costing.repositories.product_repository import ProductRepository
from costing.repositories.stock_repository import StockRepository
from costing.schemas import LotRead, ReturnableStock, StockRead
from costing.services.fifo_engine import FifoEngine, quantize_cost
from costing.services.recalculation import RecalculationResult, RecalculationService
from costing.utils import ZERO, Number, normalize_datetime, to_decimal

logger = logging.getLogger(__name__)

_CACHES_COST = (LotSource.PURCHASE.value, LotSource.OPENING_STOCK.value)


@dataclass(frozen=True)
class LotRemoval:
    lot_id: int
    product_id: int
    lot_date: datetime
    needs_recalculation: bool


class StockLotService:
    def __init__(
        self,
        db: Session,
        engine: Optional[FifoEngine] = None,
        recalculation: Optional[RecalculationService] = None,
    ):
        self._db = db
        self._engine = engine or FifoEngine(db)
        self._recalc = recalculation or RecalculationService(db, engine=self._engine)
        self._products = ProductRepository(db)
        self._stock = StockRepository(db)

    def create_lot(
        self,
        product_id: int,
        source_type: str,
        quantity: Number,
        unit_cost: Number,
        lot_date: datetime,
        source_line_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        original_unit_cost: Optional[Number] = None,
    ) -> StockLot:
        qty = to_decimal(quantity)
        if qty <= 0:
            raise InvalidQuantityError(qty)
        cost = to_decimal(unit_cost)
        if cost < 0:
            raise InvalidDocumentError("unit_cost must be >= 0", field="unit_cost", value=str(cost))
        if source_type not in {s.value for s in LotSource}:
            raise InvalidDocumentError(f"Unknown lot source: {source_type}", field="source_type")

        product = self._engine.lock_product(product_id)
        product.lot_sequence = int(product.lot_sequence or 0) + 1

        lot = StockLot(
            product_id=product_id,
            warehouse_id=warehouse_id,
            source_type=source_type,
            source_line_id=source_line_id,
            lot_date=normalize_datetime(lot_date),
            unit_cost=quantize_cost(cost),
            initial_quantity=qty,
            remaining_quantity=qty,
            sequence=product.lot_sequence,
        )

        if source_type in _CACHES_COST:
            # the cache keeps the pre-discount cost when one is given
            cached = to_decimal(original_unit_cost) if original_unit_cost is not None else cost
            product.cost = quantize_cost(cached)

        self._stock.add_lot(lot)
        logger.info(
            "stock_lot_created",
            extra={
                "product_id": product_id,
                "lot_id": lot.id,
                "source_type": source_type,
                "quantity": qty,
                "unit_cost": cost,
                "lot_date": lot.lot_date,
            },
        )
        return lot

    def delete_lot(self, lot_id: int) -> LotRemoval:
        """Remove a lot together with the consumption rows drawn from it.

        Lines that drew from the lot keep a stale COGS until the caller
        recalculates from ``LotRemoval.lot_date``.
        """
        lot = self._stock.get_lot(lot_id)
        if lot is None:
            raise StockLotNotFoundError(lot_id)
        self._engine.lock_product(lot.product_id)

        removal = LotRemoval(
            lot_id=lot.id,
            product_id=lot.product_id,
            lot_date=lot.lot_date,
            needs_recalculation=bool(self._stock.consumptions_for_lot(lot.id)),
        )
        self._stock.delete_consumptions_for_lot(lot.id)
        self._stock.delete_lot(lot)
        logger.info(
            "stock_lot_deleted",
            extra={
                "product_id": removal.product_id,
                "lot_id": removal.lot_id,
                "needs_recalculation": removal.needs_recalculation,
            },
        )
        return removal

    def delete_lots_for_line(self, line_id: int) -> list[LotRemoval]:
        return [self.delete_lot(lot.id) for lot in self._stock.lots_for_source_line(line_id)]

    def update_lot_cost(
        self,
        lot_id: int,
        new_unit_cost: Number,
        triggered_by: Optional[str] = None,
    ) -> RecalculationResult:
        cost = to_decimal(new_unit_cost)
        if cost < 0:
            raise InvalidDocumentError("unit_cost must be >= 0", field="unit_cost", value=str(cost))
        lot = self._stock.get_lot(lot_id)
        if lot is None:
            raise StockLotNotFoundError(lot_id)

        self._engine.lock_product(lot.product_id)
        lot.unit_cost = quantize_cost(cost)
        self._db.flush()
        return self._recalc.recalculate_from_date(
            lot.product_id, lot.lot_date, reason="lot_cost_change", triggered_by=triggered_by
        )

    def product_stock(self, product_id: int, warehouse_id: Optional[int] = None) -> StockRead:
        product = self._products.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        lots = self._stock.fifo_lots(product_id, warehouse_id=warehouse_id)
        total_quantity = sum((to_decimal(lot.remaining_quantity) for lot in lots), ZERO)
        total_value = sum(
            (to_decimal(lot.remaining_quantity) * to_decimal(lot.unit_cost) for lot in lots), ZERO
        )
        average_cost = total_value / total_quantity if total_quantity > 0 else ZERO

        return StockRead(
            sku=product.sku,
            name=product.name,
            quantity=total_quantity,
            average_cost=quantize_cost(average_cost),
            total_value=quantize_cost(total_value),
            fallback_cost=to_decimal(product.cost),
            lots=[LotRead.model_validate(lot) for lot in lots],
        )

    def returnable_stock(
        self,
        product_id: int,
        quantity: Number,
        warehouse_id: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> ReturnableStock:
        """Stock that can leave inventory; with `as_of`, only lots a document of that date may draw."""
        qty = to_decimal(quantity)
        if as_of is not None:
            as_of = normalize_datetime(as_of)
        available = self._stock.available_quantity(product_id, warehouse_id, as_of)
        can_return = available >= qty
        return ReturnableStock(
            available=available,
            can_return=can_return,
            shortfall=ZERO if can_return else qty - available,
        )

    def original_unit_cogs(self, line_id: int) -> Decimal:
        """Per-unit COGS recorded on a sold line; the cost of a unit returned against it."""
        line = self._stock.get_line(line_id)
        if line is None:
            raise LineNotFoundError(line_id)
        quantity = to_decimal(line.quantity)
        if quantity <= 0:
            return ZERO
        return quantize_cost(to_decimal(line.cost_of_goods_sold) / quantity)
