"""FIFO stock consumption.

Lots are drawn oldest first: ``lot_date`` ascending, then the per-product
``sequence`` the lot was created with. Only lots dated on or before the
consuming document take part. A sale is never blocked by missing stock; the
shortfall is reported as a warning instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from costing.config import CostingPolicyConfig, load_costing_config
from costing.exceptions import InvalidQuantityError, LineNotFoundError, ProductNotFoundError, StockLotNotFoundError
from costing.models import DocumentLine, Product, StockLot, StockLotConsumption
from costing.repositories.product_repository import ProductRepository
from costing.repositories.stock_repository import StockRepository
from costing.utils import ZERO, Number, format_quantity, normalize_datetime, to_decimal

logger = logging.getLogger(__name__)

COST_PLACES = Decimal("0.0001")


def quantize_cost(value: Decimal) -> Decimal:
    return value.quantize(COST_PLACES)


@dataclass(frozen=True)
class LotDraw:
    lot_id: int
    quantity: Decimal
    unit_cost: Decimal

    @property
    def total_cost(self) -> Decimal:
        return quantize_cost(self.quantity * self.unit_cost)


@dataclass
class FifoResult:
    requested: Decimal
    draws: list[LotDraw]
    total_cost: Decimal
    available_quantity: Decimal
    shortfall: Decimal
    used_fallback_cost: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def insufficient_stock(self) -> bool:
        return self.shortfall > 0

    @property
    def consumed_quantity(self) -> Decimal:
        return sum((d.quantity for d in self.draws), ZERO)


def plan_consumption(quantity: Decimal, lots: list[StockLot]) -> FifoResult:
    """Walk lots in the given order and take what is needed from each."""
    still_needed = quantity
    available = ZERO
    draws: list[LotDraw] = []
    for lot in lots:
        lot_remaining = to_decimal(lot.remaining_quantity)
        available += lot_remaining
        if still_needed <= 0 or lot_remaining <= 0:
            continue
        take = min(lot_remaining, still_needed)
        draws.append(LotDraw(lot_id=lot.id, quantity=take, unit_cost=to_decimal(lot.unit_cost)))
        still_needed -= take

    return FifoResult(
        requested=quantity,
        draws=draws,
        total_cost=sum((d.total_cost for d in draws), ZERO),
        available_quantity=available,
        shortfall=max(still_needed, ZERO),
    )


class FifoEngine:
    def __init__(
        self,
        db: Session,
        lock_rows: Optional[bool] = None,
        policy: Optional[CostingPolicyConfig] = None,
    ):
        cfg = load_costing_config()
        self._db = db
        self._lock_rows = cfg.transactions.lock_rows if lock_rows is None else lock_rows
        self._policy = policy or cfg.policy
        self._products = ProductRepository(db)
        self._stock = StockRepository(db, lock_rows=self._lock_rows)

    def _checked_quantity(self, quantity: Number) -> Decimal:
        qty = to_decimal(quantity)
        if qty <= 0:
            raise InvalidQuantityError(qty)
        return qty

    def lock_product(self, product_id: int) -> Product:
        if self._lock_rows:
            product = self._products.get_for_update(product_id)
        else:
            product = self._products.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def calculate(
        self,
        product_id: int,
        quantity: Number,
        as_of: datetime,
        warehouse_id: Optional[int] = None,
    ) -> FifoResult:
        """Preview a consumption without writing anything."""
        qty = self._checked_quantity(quantity)
        if self._products.get(product_id) is None:
            raise ProductNotFoundError(product_id)
        lots = self._stock.fifo_lots(product_id, normalize_datetime(as_of), warehouse_id)
        return plan_consumption(qty, lots)

    def consume(
        self,
        product_id: int,
        quantity: Number,
        line_id: int,
        as_of: datetime,
        warehouse_id: Optional[int] = None,
    ) -> FifoResult:
        qty = self._checked_quantity(quantity)
        if self._stock.get_line(line_id) is None:
            raise LineNotFoundError(line_id)

        product = self.lock_product(product_id)
        lots = self._stock.fifo_lots(
            product_id, normalize_datetime(as_of), warehouse_id, for_update=True
        )
        result = plan_consumption(qty, lots)

        lots_by_id = {lot.id: lot for lot in lots}
        for draw in result.draws:
            lot = lots_by_id[draw.lot_id]
            lot.remaining_quantity = to_decimal(lot.remaining_quantity) - draw.quantity
            self._stock.add_consumption(
                StockLotConsumption(
                    line_id=line_id,
                    lot_id=lot.id,
                    quantity=draw.quantity,
                    unit_cost=draw.unit_cost,
                    total_cost=draw.total_cost,
                )
            )

        if not result.draws:
            self._apply_fallback_cost(product, result)
        elif result.insufficient_stock:
            result.warnings.append(
                f'Product "{product.name}" only has {format_quantity(result.available_quantity)} units in stock, '
                f"but {format_quantity(qty)} were sold. "
                f"Shortfall of {format_quantity(result.shortfall)} units was not costed."
            )
            logger.warning(
                "fifo_shortfall",
                extra={
                    "product_id": product_id,
                    "line_id": line_id,
                    "requested": qty,
                    "available": result.available_quantity,
                    "shortfall": result.shortfall,
                },
            )

        logger.info(
            "fifo_consumed",
            extra={
                "product_id": product_id,
                "line_id": line_id,
                "quantity": qty,
                "lots": len(result.draws),
                "total_cost": result.total_cost,
            },
        )
        return result

    def _apply_fallback_cost(self, product: Product, result: FifoResult) -> None:
        symbol = self._policy.currency_symbol
        fallback = to_decimal(product.cost) if self._policy.use_fallback_cost else ZERO
        if fallback > 0:
            result.total_cost = quantize_cost(result.requested * fallback)
            result.used_fallback_cost = True
            result.warnings.append(
                f'Product "{product.name}" has no stock. '
                f"Using fallback cost of {symbol}{fallback:.2f}/unit."
            )
        else:
            result.warnings.append(
                f'Product "{product.name}" has no stock and no fallback cost set. '
                f"COGS will be {symbol}0."
            )
        logger.warning(
            "fifo_no_stock",
            extra={"product_id": product.id, "requested": result.requested, "fallback_cost": fallback},
        )

    def cost_line(self, line: DocumentLine, as_of: datetime) -> FifoResult:
        """Consume stock for a consuming line and store the resulting COGS on it."""
        result = self.consume(line.product_id, line.quantity, line.id, as_of, line.warehouse_id)
        line.cost_of_goods_sold = result.total_cost
        self._db.flush()
        return result

    def restore_consumptions(self, line_id: int) -> Decimal:
        """Give a line's consumed quantities back to their lots and drop the ledger rows."""
        line = self._stock.get_line(line_id)
        if line is None:
            raise LineNotFoundError(line_id)
        self.lock_product(line.product_id)

        restored = ZERO
        for consumption in self._stock.consumptions_for_line(line_id):
            lot = self._stock.get_lot(consumption.lot_id)
            if lot is None:
                raise StockLotNotFoundError(consumption.lot_id)
            quantity = to_decimal(consumption.quantity)
            lot.remaining_quantity = to_decimal(lot.remaining_quantity) + quantity
            restored += quantity

        self._stock.delete_consumptions_for_line(line_id)
        if restored > 0:
            logger.info(
                "fifo_restored",
                extra={"product_id": line.product_id, "line_id": line_id, "quantity": restored},
            )
        return restored
