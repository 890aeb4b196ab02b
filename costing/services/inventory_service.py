from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from costing.db import unit_of_work
from costing.exceptions import ProductNotFoundError, StockLotNotFoundError, WarehouseNotFoundError
from costing.models import Product
from costing.repositories.product_repository import ProductRepository
from costing.repositories.stock_repository import StockRepository
from costing.schemas import (
    CostAuditRead,
    FifoPreviewRead,
    LotDrawRead,
    RecalculationRead,
    StockRead,
)
from costing.services.fifo_engine import FifoEngine
from costing.services.recalculation import RecalculationResult, RecalculationService
from costing.services.stock_lot_service import StockLotService
from costing.utils import normalize_datetime


class InventoryService:
    """Read-side stock queries plus the manual recalculation entry points."""

    def __init__(self, db: Session):
        self._db = db
        self._products = ProductRepository(db)
        self._stock = StockRepository(db)
        self._engine = FifoEngine(db)
        self._recalc = RecalculationService(db, engine=self._engine)
        self._lots = StockLotService(db, engine=self._engine, recalculation=self._recalc)

    def _get_product(self, sku: str) -> Product:
        product = self._products.get_by_sku(sku)
        if product is None:
            raise ProductNotFoundError(sku)
        return product

    def _warehouse_id(self, code: Optional[str]) -> Optional[int]:
        if not code:
            return None
        warehouse = self._products.get_warehouse_by_code(code)
        if warehouse is None:
            raise WarehouseNotFoundError(code)
        return warehouse.id

    def _read(self, sku: str, result: RecalculationResult) -> RecalculationRead:
        return RecalculationRead(
            sku=sku,
            from_date=result.from_date,
            reason=result.reason,
            lines_replayed=result.lines_replayed,
            lines_changed=len(result.changes),
            warnings=result.warnings,
        )

    def stock(self, sku: str, warehouse_code: Optional[str] = None) -> StockRead:
        product = self._get_product(sku)
        return self._lots.product_stock(product.id, self._warehouse_id(warehouse_code))

    def preview(
        self,
        sku: str,
        quantity: Decimal,
        as_of: Optional[datetime] = None,
        warehouse_code: Optional[str] = None,
    ) -> FifoPreviewRead:
        product = self._get_product(sku)
        result = self._engine.calculate(
            product.id, quantity, normalize_datetime(as_of), self._warehouse_id(warehouse_code)
        )
        return FifoPreviewRead(
            sku=product.sku,
            quantity=result.requested,
            total_cost=result.total_cost,
            available_quantity=result.available_quantity,
            shortfall=result.shortfall,
            draws=[
                LotDrawRead(
                    lot_id=d.lot_id,
                    quantity=d.quantity,
                    unit_cost=d.unit_cost,
                    total_cost=d.total_cost,
                )
                for d in result.draws
            ],
        )

    def recalculate(
        self,
        sku: str,
        from_date: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> RecalculationRead:
        product = self._get_product(sku)
        with unit_of_work(self._db):
            result = self._recalc.recalculate_product(
                product.id,
                normalize_datetime(from_date) if from_date is not None else None,
                triggered_by=actor,
            )
        return self._read(sku, result)

    def update_lot_cost(self, lot_id: int, unit_cost: Decimal, actor: Optional[str] = None) -> RecalculationRead:
        lot = self._stock.get_lot(lot_id)
        if lot is None:
            raise StockLotNotFoundError(lot_id)
        with unit_of_work(self._db):
            result = self._lots.update_lot_cost(lot_id, unit_cost, triggered_by=actor)
        product = self._products.get(result.product_id)
        return self._read(product.sku, result)

    def cost_audit(self, sku: str, limit: int = 100) -> list[CostAuditRead]:
        product = self._get_product(sku)
        return [
            CostAuditRead.model_validate(row)
            for row in self._stock.cost_audit_for_product(product.id, limit=limit)
        ]
