from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from costing.audit import log_event
from costing.deps import actor_dep, session_dep
from costing.schemas import ProductCreate, ProductRead, WarehouseCreate, WarehouseRead
from costing.services.product_service import ProductService

router = APIRouter(tags=["products"])


def product_service_dep(db: Session = Depends(session_dep)) -> ProductService:
    return ProductService(db)


@router.post("/products", response_model=ProductRead)
def create_product(
    payload: ProductCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: ProductService = Depends(product_service_dep),
) -> ProductRead:
    created = service.create(payload)
    result = ProductRead.model_validate(created)
    log_event(
        service._db,
        actor,
        action="product_create",
        entity_type="product",
        entity_id=result.sku,
        detail={"name": result.name, "cost": str(result.cost)},
    )
    return result


@router.get("/products", response_model=list[ProductRead])
def list_products(service: ProductService = Depends(product_service_dep)) -> list[ProductRead]:
    return [ProductRead.model_validate(p) for p in service.list()]


@router.get("/products/{sku}", response_model=ProductRead)
def get_product(sku: str, service: ProductService = Depends(product_service_dep)) -> ProductRead:
    return ProductRead.model_validate(service.get_by_sku(sku))


@router.post("/warehouses", response_model=WarehouseRead)
def create_warehouse(
    payload: WarehouseCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: ProductService = Depends(product_service_dep),
) -> WarehouseRead:
    result = WarehouseRead.model_validate(service.create_warehouse(payload))
    log_event(
        service._db,
        actor,
        action="warehouse_create",
        entity_type="warehouse",
        entity_id=result.code,
        detail={"name": result.name},
    )
    return result


@router.get("/warehouses", response_model=list[WarehouseRead])
def list_warehouses(service: ProductService = Depends(product_service_dep)) -> list[WarehouseRead]:
    return [WarehouseRead.model_validate(w) for w in service.list_warehouses()]
