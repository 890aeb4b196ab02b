from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costing.db import Base

Quantity = Numeric(18, 4)
Money = Numeric(18, 4)


class LotSource(str, enum.Enum):
    PURCHASE = "PURCHASE"
    OPENING_STOCK = "OPENING_STOCK"
    RETURN = "RETURN"


class DocumentKind(str, enum.Enum):
    SALES_INVOICE = "SALES_INVOICE"
    POS_SALE = "POS_SALE"
    DEBIT_NOTE = "DEBIT_NOTE"
    PURCHASE = "PURCHASE"
    OPENING_STOCK = "OPENING_STOCK"
    CREDIT_NOTE = "CREDIT_NOTE"


CONSUMING_KINDS = (
    DocumentKind.SALES_INVOICE.value,
    DocumentKind.POS_SALE.value,
    DocumentKind.DEBIT_NOTE.value,
)

LOT_SOURCE_BY_KIND = {
    DocumentKind.PURCHASE.value: LotSource.PURCHASE.value,
    DocumentKind.OPENING_STOCK.value: LotSource.OPENING_STOCK.value,
    DocumentKind.CREDIT_NOTE.value: LotSource.RETURN.value,
}


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), index=True)
    actor: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(64), index=True)
    entity_type: Mapped[str] = mapped_column(String(64), index=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    # Last known unit cost. Refreshed on purchase/opening stock, read only when no lot stock exists.
    cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), server_default="0")
    lot_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Warehouse(Base):
    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), index=True)
    number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    document_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    lines: Mapped[list["DocumentLine"]] = relationship(
        back_populates="document",
        order_by="DocumentLine.id",
        cascade="all, delete-orphan",
    )


class DocumentLine(Base):
    __tablename__ = "document_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)
    warehouse_id: Mapped[Optional[int]] = mapped_column(ForeignKey("warehouses.id"), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Quantity)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    original_unit_cost: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    returned_line_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("document_lines.id"), nullable=True
    )
    cost_of_goods_sold: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0"), server_default="0"
    )

    document: Mapped[Document] = relationship(back_populates="lines")


class StockLot(Base):
    __tablename__ = "stock_lots"
    __table_args__ = (
        CheckConstraint(
            "remaining_quantity >= 0 AND remaining_quantity <= initial_quantity",
            name="ck_stock_lots_remaining_bounds",
        ),
        Index("ix_stock_lots_fifo", "product_id", "lot_date", "sequence"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)
    warehouse_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("warehouses.id"), nullable=True, index=True
    )
    source_type: Mapped[str] = mapped_column(String(16), index=True)
    source_line_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("document_lines.id"), nullable=True, index=True
    )
    lot_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    unit_cost: Mapped[Decimal] = mapped_column(Money)
    initial_quantity: Mapped[Decimal] = mapped_column(Quantity)
    remaining_quantity: Mapped[Decimal] = mapped_column(Quantity)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class StockLotConsumption(Base):
    __tablename__ = "stock_lot_consumptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    line_id: Mapped[int] = mapped_column(ForeignKey("document_lines.id"), index=True)
    lot_id: Mapped[int] = mapped_column(ForeignKey("stock_lots.id"), index=True)
    quantity: Mapped[Decimal] = mapped_column(Quantity)
    unit_cost: Mapped[Decimal] = mapped_column(Money)
    total_cost: Mapped[Decimal] = mapped_column(Money)


class CostAuditLog(Base):
    __tablename__ = "cost_audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)
    line_id: Mapped[int] = mapped_column(Integer, index=True)
    old_cogs: Mapped[Decimal] = mapped_column(Money)
    new_cogs: Mapped[Decimal] = mapped_column(Money)
    change_amount: Mapped[Decimal] = mapped_column(Money)
    reason: Mapped[str] = mapped_column(String(64), index=True)
    triggered_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
