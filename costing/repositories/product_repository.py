from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing.models import Product, Warehouse


class ProductRepository:
    def __init__(self, db: Session):
        self._db = db

    def get(self, product_id: int) -> Optional[Product]:
        return self._db.get(Product, product_id)

    def get_by_sku(self, sku: str) -> Optional[Product]:
        sku = sku.strip()
        return self._db.scalar(select(Product).where(Product.sku == sku))

    def get_for_update(self, product_id: int) -> Optional[Product]:
        """Load the product row with a row lock; serializes costing work per product."""
        return self._db.scalar(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def list(self) -> list[Product]:
        return list(self._db.scalars(select(Product).order_by(Product.id)))

    def add(self, product: Product) -> None:
        self._db.add(product)

    def get_warehouse_by_code(self, code: str) -> Optional[Warehouse]:
        return self._db.scalar(select(Warehouse).where(Warehouse.code == code.strip()))

    def list_warehouses(self) -> list[Warehouse]:
        return list(self._db.scalars(select(Warehouse).order_by(Warehouse.code)))

    def add_warehouse(self, warehouse: Warehouse) -> None:
        self._db.add(warehouse)

    def list_skus_starting_with(self, prefix: str) -> list[str]:
        return list(self._db.scalars(select(Product.sku).where(Product.sku.like(f"{prefix}%"))))
