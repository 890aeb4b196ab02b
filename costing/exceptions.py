"""
Typed exceptions raised by the costing engine.

    CostingError (base)
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- WarehouseNotFoundError
    |   +-- StockLotNotFoundError
    |   +-- LineNotFoundError
    |   +-- DocumentNotFoundError
    |
    +-- InvalidQuantityError
    +-- InvalidDocumentError
    +-- InsufficientStockError

Every exception carries a machine-readable ``code`` and the HTTP status the
API layer answers with. Any of them aborts the enclosing transaction.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class CostingError(Exception):
    code: str = "COSTING_ERROR"
    status_code: int = 500

    def __init__(self, message: str, **data: Any):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message, **self.data}


class NotFoundError(CostingError):
    code = "NOT_FOUND"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_ref: Any):
        super().__init__(f"Product not found: {product_ref}", product=str(product_ref))


class WarehouseNotFoundError(NotFoundError):
    code = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_ref: Any):
        super().__init__(f"Warehouse not found: {warehouse_ref}", warehouse=str(warehouse_ref))


class StockLotNotFoundError(NotFoundError):
    code = "STOCK_LOT_NOT_FOUND"

    def __init__(self, lot_id: int):
        super().__init__(f"Stock lot not found: {lot_id}", lot_id=lot_id)


class LineNotFoundError(NotFoundError):
    code = "LINE_NOT_FOUND"

    def __init__(self, line_id: int):
        super().__init__(f"Document line not found: {line_id}", line_id=line_id)


class DocumentNotFoundError(NotFoundError):
    code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: int, kind: str = ""):
        super().__init__(f"Document not found: {document_id}", document_id=document_id, kind=kind)


class InvalidQuantityError(CostingError):
    code = "INVALID_QUANTITY"
    status_code = 422

    def __init__(self, quantity: Any, field: str = "quantity"):
        super().__init__(f"{field} must be greater than 0", field=field, value=str(quantity))


class InvalidDocumentError(CostingError):
    code = "INVALID_DOCUMENT"
    status_code = 422


class InsufficientStockError(CostingError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, product_ref: Any, requested: Decimal, available: Decimal):
        shortfall = requested - available
        super().__init__(
            f"Insufficient stock for product {product_ref}. "
            f"Requested: {requested}, Available: {available}, Shortfall: {shortfall}",
            product=str(product_ref),
            requested=str(requested),
            available=str(available),
            shortfall=str(shortfall),
        )
