from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from typing_extensions import Literal

from pydantic import BaseModel, Field, field_validator


def _positive(v: Decimal) -> Decimal:
    if v <= 0:
        raise ValueError("quantity must be greater than 0")
    return v


def _non_negative(v: Optional[Decimal]) -> Optional[Decimal]:
    if v is not None and v < 0:
        raise ValueError("must be >= 0")
    return v


class ProductCreate(BaseModel):
    sku: Optional[str] = None
    name: str
    cost: Decimal = Decimal("0")

    @field_validator("cost")
    @classmethod
    def cost_must_not_be_negative(cls, v: Decimal) -> Decimal:
        return _non_negative(v)


class ProductRead(BaseModel):
    id: int
    sku: str
    name: str
    cost: Decimal

    model_config = {"from_attributes": True}


class WarehouseCreate(BaseModel):
    code: str
    name: str


class WarehouseRead(BaseModel):
    id: int
    code: str
    name: str

    model_config = {"from_attributes": True}


class SaleLineCreate(BaseModel):
    sku: str
    quantity: Decimal
    unit_price: Optional[Decimal] = None
    warehouse_code: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: Decimal) -> Decimal:
        return _positive(v)

    @field_validator("unit_price")
    @classmethod
    def unit_price_must_not_be_negative(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _non_negative(v)


class InboundLineCreate(BaseModel):
    sku: str
    quantity: Decimal
    unit_cost: Optional[Decimal] = None
    discount_pct: Decimal = Decimal("0")
    warehouse_code: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: Decimal) -> Decimal:
        return _positive(v)

    @field_validator("unit_cost")
    @classmethod
    def unit_cost_must_not_be_negative(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _non_negative(v)

    @field_validator("discount_pct")
    @classmethod
    def discount_in_range(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 100:
            raise ValueError("discount_pct must be between 0 and 100")
        return v


class ReturnLineCreate(BaseModel):
    sku: str
    quantity: Decimal
    returned_line_id: Optional[int] = None
    unit_cost: Optional[Decimal] = None
    warehouse_code: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: Decimal) -> Decimal:
        return _positive(v)

    @field_validator("unit_cost")
    @classmethod
    def unit_cost_must_not_be_negative(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _non_negative(v)


class SaleCreate(BaseModel):
    kind: Literal["SALES_INVOICE", "POS_SALE"] = "SALES_INVOICE"
    document_date: Optional[datetime] = None
    note: Optional[str] = None
    lines: list[SaleLineCreate] = Field(min_length=1)


class SaleUpdate(BaseModel):
    document_date: Optional[datetime] = None
    note: Optional[str] = None
    lines: list[SaleLineCreate] = Field(min_length=1)


class InboundCreate(BaseModel):
    document_date: Optional[datetime] = None
    note: Optional[str] = None
    lines: list[InboundLineCreate] = Field(min_length=1)


class CreditNoteCreate(BaseModel):
    document_date: Optional[datetime] = None
    note: Optional[str] = None
    lines: list[ReturnLineCreate] = Field(min_length=1)


class DebitNoteCreate(BaseModel):
    document_date: Optional[datetime] = None
    note: Optional[str] = None
    lines: list[SaleLineCreate] = Field(min_length=1)


class LineRead(BaseModel):
    id: int
    product_id: int
    warehouse_id: Optional[int]
    quantity: Decimal
    unit_price: Optional[Decimal]
    unit_cost: Optional[Decimal]
    returned_line_id: Optional[int]
    cost_of_goods_sold: Decimal

    model_config = {"from_attributes": True}


class DocumentRead(BaseModel):
    id: int
    kind: str
    number: str
    document_date: datetime
    note: Optional[str]
    lines: list[LineRead]

    model_config = {"from_attributes": True}


class DocumentResult(BaseModel):
    document: DocumentRead
    warnings: list[str] = Field(default_factory=list)
    recalculated_skus: list[str] = Field(default_factory=list)


class DeleteResult(BaseModel):
    document_id: int
    number: str
    warnings: list[str] = Field(default_factory=list)
    recalculated_skus: list[str] = Field(default_factory=list)


class LotRead(BaseModel):
    id: int
    source_type: str
    warehouse_id: Optional[int]
    lot_date: datetime
    unit_cost: Decimal
    initial_quantity: Decimal
    remaining_quantity: Decimal
    sequence: int

    model_config = {"from_attributes": True}


class StockRead(BaseModel):
    sku: str
    name: Optional[str] = None
    quantity: Decimal
    average_cost: Decimal
    total_value: Decimal
    fallback_cost: Decimal
    lots: list[LotRead] = Field(default_factory=list)


class ReturnableStock(BaseModel):
    available: Decimal
    can_return: bool
    shortfall: Decimal


class LotDrawRead(BaseModel):
    lot_id: int
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal


class FifoPreviewRead(BaseModel):
    sku: str
    quantity: Decimal
    total_cost: Decimal
    available_quantity: Decimal
    shortfall: Decimal
    draws: list[LotDrawRead]


class RecalculateRequest(BaseModel):
    from_date: Optional[datetime] = None


class RecalculationRead(BaseModel):
    sku: str
    from_date: datetime
    reason: str
    lines_replayed: int
    lines_changed: int
    warnings: list[str] = Field(default_factory=list)


class LotCostUpdate(BaseModel):
    unit_cost: Decimal

    @field_validator("unit_cost")
    @classmethod
    def unit_cost_must_not_be_negative(cls, v: Decimal) -> Decimal:
        return _non_negative(v)


class CostAuditRead(BaseModel):
    id: int
    created_at: datetime
    line_id: int
    old_cogs: Decimal
    new_cogs: Decimal
    change_amount: Decimal
    reason: str
    triggered_by: Optional[str]

    model_config = {"from_attributes": True}
