from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from costing.audit import log_event
from costing.deps import actor_dep, session_dep
from costing.schemas import (
    CostAuditRead,
    FifoPreviewRead,
    LotCostUpdate,
    RecalculateRequest,
    RecalculationRead,
    StockRead,
)
from costing.services.inventory_service import InventoryService

router = APIRouter(tags=["inventory"])


def inventory_service_dep(db: Session = Depends(session_dep)) -> InventoryService:
    return InventoryService(db)


@router.get("/stock/{sku}", response_model=StockRead)
def get_stock(
    sku: str,
    warehouse: Optional[str] = None,
    service: InventoryService = Depends(inventory_service_dep),
) -> StockRead:
    return service.stock(sku, warehouse)


@router.get("/stock/{sku}/preview", response_model=FifoPreviewRead)
def preview_consumption(
    sku: str,
    quantity: Decimal = Query(gt=0),
    as_of: Optional[datetime] = None,
    warehouse: Optional[str] = None,
    service: InventoryService = Depends(inventory_service_dep),
) -> FifoPreviewRead:
    return service.preview(sku, quantity, as_of, warehouse)


@router.post("/stock/{sku}/recalculate", response_model=RecalculationRead)
def recalculate_stock(
    sku: str,
    payload: Optional[RecalculateRequest] = None,
    actor: Optional[str] = Depends(actor_dep),
    service: InventoryService = Depends(inventory_service_dep),
) -> RecalculationRead:
    from_date = payload.from_date if payload is not None else None
    result = service.recalculate(sku, from_date, actor=actor)
    log_event(
        service._db,
        actor,
        action="fifo_recalculate",
        entity_type="product",
        entity_id=sku,
        detail={
            "from_date": result.from_date.isoformat(),
            "lines_replayed": result.lines_replayed,
            "lines_changed": result.lines_changed,
        },
    )
    return result


@router.get("/stock/{sku}/cost-audit", response_model=list[CostAuditRead])
def get_cost_audit(
    sku: str,
    limit: int = Query(default=100, ge=1, le=1000),
    service: InventoryService = Depends(inventory_service_dep),
) -> list[CostAuditRead]:
    return service.cost_audit(sku, limit=limit)


@router.put("/lots/{lot_id}/cost", response_model=RecalculationRead)
def update_lot_cost(
    lot_id: int,
    payload: LotCostUpdate,
    actor: Optional[str] = Depends(actor_dep),
    service: InventoryService = Depends(inventory_service_dep),
) -> RecalculationRead:
    result = service.update_lot_cost(lot_id, payload.unit_cost, actor=actor)
    log_event(
        service._db,
        actor,
        action="lot_cost_update",
        entity_type="stock_lot",
        entity_id=str(lot_id),
        detail={"unit_cost": str(payload.unit_cost), "lines_changed": result.lines_changed},
    )
    return result
