from __future__ import annotations

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from costing.exceptions import ProductNotFoundError
from costing.models import Product, Warehouse
from costing.repositories.product_repository import ProductRepository
from costing.schemas import ProductCreate, WarehouseCreate
from costing.services.fifo_engine import quantize_cost


class ProductService:
    def __init__(self, db: Session):
        self._db = db
        self._products = ProductRepository(db)

    def _generate_sku(self, prefix: str = "SKU", width: int = 6) -> str:
        existing = self._products.list_skus_starting_with(prefix)
        max_n = 0
        for sku in existing:
            suffix = sku[len(prefix) :]
            if suffix.isdigit():
                max_n = max(max_n, int(suffix))
        return f"{prefix}{str(max_n + 1).zfill(width)}"

    def create(self, payload: ProductCreate) -> Product:
        if not payload.name.strip():
            raise HTTPException(status_code=422, detail="name must not be empty")

        sku = payload.sku.strip() if payload.sku else ""
        if not sku:
            sku = self._generate_sku()

        product = Product(
            sku=sku,
            name=payload.name.strip(),
            cost=quantize_cost(payload.cost),
            lot_sequence=0,
        )
        self._products.add(product)
        try:
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            raise HTTPException(status_code=409, detail="SKU already exists")
        self._db.refresh(product)
        return product

    def get_by_sku(self, sku: str) -> Product:
        product = self._products.get_by_sku(sku)
        if product is None:
            raise ProductNotFoundError(sku)
        return product

    def list(self) -> list[Product]:
        return self._products.list()

    def create_warehouse(self, payload: WarehouseCreate) -> Warehouse:
        code = payload.code.strip()
        if not code:
            raise HTTPException(status_code=422, detail="code must not be empty")
        if not payload.name.strip():
            raise HTTPException(status_code=422, detail="name must not be empty")

        warehouse = Warehouse(code=code, name=payload.name.strip())
        self._products.add_warehouse(warehouse)
        try:
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            raise HTTPException(status_code=409, detail="Warehouse code already exists")
        self._db.refresh(warehouse)
        return warehouse

    def list_warehouses(self) -> list[Warehouse]:
        return self._products.list_warehouses()
