from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from costing.db import unit_of_work
from costing.exceptions import (
    DocumentNotFoundError,
    InsufficientStockError,
    InvalidDocumentError,
    LineNotFoundError,
    ProductNotFoundError,
    WarehouseNotFoundError,
)
from costing.models import (
    LOT_SOURCE_BY_KIND,
    Document,
    DocumentKind,
    DocumentLine,
    Product,
)
from costing.repositories.document_repository import DocumentRepository
from costing.repositories.product_repository import ProductRepository
from costing.schemas import (
    CreditNoteCreate,
    DebitNoteCreate,
    DeleteResult,
    DocumentRead,
    DocumentResult,
    InboundCreate,
    InboundLineCreate,
    SaleCreate,
    SaleLineCreate,
    SaleUpdate,
)
from costing.services.backdating import BackdateDetector, get_recalculation_start_date
from costing.services.fifo_engine import FifoEngine, quantize_cost
from costing.services.recalculation import RecalculationService
from costing.services.stock_lot_service import StockLotService
from costing.utils import ZERO, normalize_datetime, to_decimal

logger = logging.getLogger(__name__)

SALE_KINDS = (DocumentKind.SALES_INVOICE.value, DocumentKind.POS_SALE.value)
HUNDRED = Decimal("100")


class DocumentService:
    """Document handlers: every public method is one transaction around the costing engine."""

    def __init__(self, db: Session):
        self._db = db
        self._products = ProductRepository(db)
        self._documents = DocumentRepository(db)
        self._engine = FifoEngine(db)
        self._backdating = BackdateDetector(db)
        self._recalc = RecalculationService(db, engine=self._engine)
        self._lots = StockLotService(db, engine=self._engine, recalculation=self._recalc)

    # -- helpers --------------------------------------------------------------

    def _get_product(self, sku: str) -> Product:
        product = self._products.get_by_sku(sku)
        if product is None:
            raise ProductNotFoundError(sku)
        return product

    def _warehouse_id(self, code: Optional[str]) -> Optional[int]:
        if not code or not code.strip():
            return None
        warehouse = self._products.get_warehouse_by_code(code)
        if warehouse is None:
            raise WarehouseNotFoundError(code)
        return warehouse.id

    def _get_document(self, document_id: int, kinds: Iterable[str]) -> Document:
        document = self._documents.get(document_id)
        if document is None or document.kind not in tuple(kinds):
            raise DocumentNotFoundError(document_id, kind="/".join(kinds))
        return document

    def _new_document(self, kind: str, document_date: Optional[datetime], note: Optional[str]) -> Document:
        document = Document(
            kind=kind,
            number=self._documents.next_number(kind),
            document_date=normalize_datetime(document_date),
            note=note,
        )
        self._documents.add(document)
        return document

    def _sku_map(self, product_ids: Iterable[int]) -> dict[int, str]:
        out: dict[int, str] = {}
        for pid in product_ids:
            product = self._products.get(pid)
            if product is not None:
                out[pid] = product.sku
        return out

    def get_document(self, document_id: int) -> DocumentRead:
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return DocumentRead.model_validate(document)

    def _result(self, document_id: int, warnings: list[str], product_ids: Iterable[int]) -> DocumentResult:
        document = self._documents.get(document_id)
        return DocumentResult(
            document=DocumentRead.model_validate(document),
            warnings=warnings,
            recalculated_skus=sorted(self._sku_map(product_ids).values()),
        )

    def _recalculate(
        self,
        product_ids: Iterable[int],
        from_date: datetime,
        reason: str,
        triggered_by: str,
        line_ids: set[int],
    ) -> list[str]:
        warnings: list[str] = []
        for product_id in sorted(set(product_ids)):
            result = self._recalc.recalculate_from_date(
                product_id, from_date, reason=reason, triggered_by=triggered_by
            )
            warnings.extend(result.warnings_for(line_ids))
        return warnings

    # -- consuming documents --------------------------------------------------

    def _add_consuming_lines(
        self,
        document: Document,
        lines: list[SaleLineCreate],
        strict: bool = False,
    ) -> tuple[list[str], set[int]]:
        """Create lines and cost them now, or leave them at zero when the date is backdated.

        Returns the warnings and the products whose costing was deferred to a recalculation.
        """
        warnings: list[str] = []
        deferred: set[int] = set()
        pending: dict[tuple[int, Optional[int]], Decimal] = {}
        for line_in in lines:
            product = self._get_product(line_in.sku)
            warehouse_id = self._warehouse_id(line_in.warehouse_code)
            quantity = to_decimal(line_in.quantity)
            backdated = product.id in deferred or self._backdating.is_backdated(
                product.id, document.document_date
            )

            if strict:
                # deferred lines have not drawn yet, so their quantity still counts against the lots
                key = (product.id, warehouse_id)
                requested = pending.get(key, ZERO) + quantity
                returnable = self._lots.returnable_stock(
                    product.id, requested, warehouse_id, as_of=document.document_date
                )
                if not returnable.can_return:
                    raise InsufficientStockError(product.sku, requested, returnable.available)
                if backdated:
                    pending[key] = requested

            line = DocumentLine(
                document=document,
                product_id=product.id,
                warehouse_id=warehouse_id,
                quantity=quantity,
                unit_price=line_in.unit_price,
                cost_of_goods_sold=ZERO,
            )
            self._documents.add_line(line)

            if backdated:
                deferred.add(product.id)
                continue

            result = self._engine.cost_line(line, document.document_date)
            warnings.extend(result.warnings)
        return warnings, deferred

    def _create_consuming(
        self,
        kind: str,
        document_date: Optional[datetime],
        note: Optional[str],
        lines: list[SaleLineCreate],
        strict: bool = False,
    ) -> DocumentResult:
        with unit_of_work(self._db):
            document = self._new_document(kind, document_date, note)
            warnings, deferred = self._add_consuming_lines(document, lines, strict=strict)
            line_ids = {line.id for line in document.lines}
            warnings.extend(
                self._recalculate(
                    deferred,
                    document.document_date,
                    reason="backdated_sale" if kind in SALE_KINDS else f"backdated_{kind.lower()}",
                    triggered_by=document.number,
                    line_ids=line_ids,
                )
            )
            document_id = document.id

        logger.info(
            "document_created",
            extra={"document_id": document_id, "kind": kind, "deferred_products": sorted(deferred)},
        )
        return self._result(document_id, warnings, deferred)

    def _delete_consuming(self, document_id: int, kinds: Iterable[str]) -> DeleteResult:
        with unit_of_work(self._db):
            document = self._get_document(document_id, kinds)
            number = document.number
            document_date = document.document_date
            affected: set[int] = set()
            line_ids = [line.id for line in document.lines]

            for line in list(document.lines):
                if self._engine.restore_consumptions(line.id) > 0:
                    affected.add(line.product_id)

            self._documents.detach_returns(line_ids)
            self._documents.delete(document)
            self._recalculate(affected, document_date, "delete", number, set())
            skus = sorted(self._sku_map(affected).values())

        logger.info("document_deleted", extra={"document_id": document_id, "number": number})
        return DeleteResult(document_id=document_id, number=number, recalculated_skus=skus)

    def create_sale(self, payload: SaleCreate) -> DocumentResult:
        return self._create_consuming(payload.kind, payload.document_date, payload.note, payload.lines)

    def update_sale(self, document_id: int, payload: SaleUpdate) -> DocumentResult:
        with unit_of_work(self._db):
            document = self._get_document(document_id, SALE_KINDS)
            old_date = document.document_date
            affected: set[int] = set()
            old_line_ids = [line.id for line in document.lines]

            for line in list(document.lines):
                affected.add(line.product_id)
                self._engine.restore_consumptions(line.id)
            self._documents.detach_returns(old_line_ids)
            for line in list(document.lines):
                self._documents.delete_line(line)

            if payload.document_date is not None:
                document.document_date = normalize_datetime(payload.document_date)
            document.note = payload.note
            self._db.flush()

            for line_in in payload.lines:
                product = self._get_product(line_in.sku)
                affected.add(product.id)
                self._documents.add_line(
                    DocumentLine(
                        document=document,
                        product_id=product.id,
                        warehouse_id=self._warehouse_id(line_in.warehouse_code),
                        quantity=to_decimal(line_in.quantity),
                        unit_price=line_in.unit_price,
                        cost_of_goods_sold=ZERO,
                    )
                )

            start = get_recalculation_start_date(old_date, document.document_date)
            line_ids = {line.id for line in document.lines}
            warnings = self._recalculate(affected, start, "edit", document.number, line_ids)

        return self._result(document_id, warnings, affected)

    def delete_sale(self, document_id: int) -> DeleteResult:
        return self._delete_consuming(document_id, SALE_KINDS)

    def create_debit_note(self, payload: DebitNoteCreate) -> DocumentResult:
        """Purchase return: stock leaves FIFO like a sale but must be fully available."""
        return self._create_consuming(
            DocumentKind.DEBIT_NOTE.value, payload.document_date, payload.note, payload.lines, strict=True
        )

    def delete_debit_note(self, document_id: int) -> DeleteResult:
        return self._delete_consuming(document_id, (DocumentKind.DEBIT_NOTE.value,))

    # -- inbound documents ----------------------------------------------------

    def _inbound_unit_cost(self, product: Product, line_in: InboundLineCreate) -> tuple[Decimal, Decimal]:
        """Return (net unit cost after discount, unit cost before discount)."""
        unit_cost = line_in.unit_cost
        if unit_cost is None:
            unit_cost = to_decimal(product.cost)
        gross = to_decimal(unit_cost)
        net = gross * (HUNDRED - to_decimal(line_in.discount_pct)) / HUNDRED
        return quantize_cost(net), gross

    def _add_inbound_lines(self, document: Document, lines: list[InboundLineCreate]) -> set[int]:
        source_type = LOT_SOURCE_BY_KIND[document.kind]
        products: set[int] = set()
        for line_in in lines:
            product = self._get_product(line_in.sku)
            warehouse_id = self._warehouse_id(line_in.warehouse_code)
            net_cost, gross_cost = self._inbound_unit_cost(product, line_in)
            line = DocumentLine(
                document=document,
                product_id=product.id,
                warehouse_id=warehouse_id,
                quantity=to_decimal(line_in.quantity),
                unit_cost=net_cost,
                original_unit_cost=gross_cost,
                cost_of_goods_sold=ZERO,
            )
            self._documents.add_line(line)
            self._lots.create_lot(
                product.id,
                source_type,
                line.quantity,
                net_cost,
                document.document_date,
                source_line_id=line.id,
                warehouse_id=warehouse_id,
                original_unit_cost=gross_cost,
            )
            products.add(product.id)
        return products

    def _reconcile_inbound(self, document: Document, product_ids: set[int], reason: str) -> set[int]:
        """Recalculate products whose sales the new lots should have fed."""
        recalculated: set[int] = set()
        document_date = document.document_date
        for product_id in sorted(product_ids):
            # lots are eligible for lines dated on or after them, so anything from here on may change
            if not self._backdating.has_consuming_line_from(product_id, document_date):
                continue

            label = reason
            if not self._backdating.is_backdated(product_id, document_date):
                zero_cogs_date = self._backdating.earliest_zero_cogs_date(product_id)
                if zero_cogs_date is not None and zero_cogs_date >= document_date:
                    label = "zero_cogs_fix"
            self._recalc.recalculate_from_date(
                product_id, document_date, reason=label, triggered_by=document.number
            )
            recalculated.add(product_id)
        return recalculated

    def _create_inbound(
        self,
        kind: str,
        document_date: Optional[datetime],
        note: Optional[str],
        lines: list[InboundLineCreate],
    ) -> DocumentResult:
        with unit_of_work(self._db):
            document = self._new_document(kind, document_date, note)
            products = self._add_inbound_lines(document, lines)
            recalculated = self._reconcile_inbound(document, products, f"backdated_{kind.lower()}")
            document_id = document.id

        logger.info("document_created", extra={"document_id": document_id, "kind": kind})
        return self._result(document_id, [], recalculated)

    def _update_inbound(self, document_id: int, kind: str, payload: InboundCreate) -> DocumentResult:
        with unit_of_work(self._db):
            document = self._get_document(document_id, (kind,))
            old_date = document.document_date
            affected: set[int] = set()

            for line in list(document.lines):
                affected.add(line.product_id)
                self._lots.delete_lots_for_line(line.id)
                self._documents.delete_line(line)

            if payload.document_date is not None:
                document.document_date = normalize_datetime(payload.document_date)
            document.note = payload.note
            self._db.flush()

            affected |= self._add_inbound_lines(document, payload.lines)
            start = get_recalculation_start_date(old_date, document.document_date)
            self._recalculate(affected, start, "edit", document.number, set())

        return self._result(document_id, [], affected)

    def _delete_inbound(self, document_id: int, kind: str) -> DeleteResult:
        with unit_of_work(self._db):
            document = self._get_document(document_id, (kind,))
            number = document.number
            document_date = document.document_date
            affected: set[int] = set()

            for line in list(document.lines):
                for removal in self._lots.delete_lots_for_line(line.id):
                    if removal.needs_recalculation:
                        affected.add(removal.product_id)

            self._documents.delete(document)
            self._recalculate(affected, document_date, "delete", number, set())
            skus = sorted(self._sku_map(affected).values())

        logger.info("document_deleted", extra={"document_id": document_id, "number": number})
        return DeleteResult(document_id=document_id, number=number, recalculated_skus=skus)

    def create_purchase(self, payload: InboundCreate) -> DocumentResult:
        return self._create_inbound(DocumentKind.PURCHASE.value, payload.document_date, payload.note, payload.lines)

    def update_purchase(self, document_id: int, payload: InboundCreate) -> DocumentResult:
        return self._update_inbound(document_id, DocumentKind.PURCHASE.value, payload)

    def delete_purchase(self, document_id: int) -> DeleteResult:
        return self._delete_inbound(document_id, DocumentKind.PURCHASE.value)

    def create_opening_stock(self, payload: InboundCreate) -> DocumentResult:
        return self._create_inbound(
            DocumentKind.OPENING_STOCK.value, payload.document_date, payload.note, payload.lines
        )

    def update_opening_stock(self, document_id: int, payload: InboundCreate) -> DocumentResult:
        return self._update_inbound(document_id, DocumentKind.OPENING_STOCK.value, payload)

    def delete_opening_stock(self, document_id: int) -> DeleteResult:
        return self._delete_inbound(document_id, DocumentKind.OPENING_STOCK.value)

    def create_credit_note(self, payload: CreditNoteCreate) -> DocumentResult:
        """Sales return: returned units come back as a RETURN lot at their original COGS."""
        kind = DocumentKind.CREDIT_NOTE.value
        with unit_of_work(self._db):
            document = self._new_document(kind, payload.document_date, payload.note)
            products: set[int] = set()
            for line_in in payload.lines:
                product = self._get_product(line_in.sku)
                warehouse_id = self._warehouse_id(line_in.warehouse_code)
                unit_cost = self._return_unit_cost(product, line_in.returned_line_id, line_in.unit_cost)
                line = DocumentLine(
                    document=document,
                    product_id=product.id,
                    warehouse_id=warehouse_id,
                    quantity=to_decimal(line_in.quantity),
                    unit_cost=unit_cost,
                    returned_line_id=line_in.returned_line_id,
                    cost_of_goods_sold=ZERO,
                )
                self._documents.add_line(line)
                self._lots.create_lot(
                    product.id,
                    LOT_SOURCE_BY_KIND[kind],
                    line.quantity,
                    unit_cost,
                    document.document_date,
                    source_line_id=line.id,
                    warehouse_id=warehouse_id,
                )
                products.add(product.id)

            recalculated = self._reconcile_inbound(document, products, "backdated_return")
            document_id = document.id

        return self._result(document_id, [], recalculated)

    def _return_unit_cost(
        self,
        product: Product,
        returned_line_id: Optional[int],
        unit_cost: Optional[Decimal],
    ) -> Decimal:
        if returned_line_id is not None:
            sold = self._documents.get_line(returned_line_id)
            if sold is None:
                raise LineNotFoundError(returned_line_id)
            if sold.product_id != product.id or sold.document.kind not in SALE_KINDS:
                raise InvalidDocumentError(
                    "returned_line_id must reference a sold line of the same product",
                    field="returned_line_id",
                    value=str(returned_line_id),
                )

        if unit_cost is not None:
            return quantize_cost(to_decimal(unit_cost))
        if returned_line_id is not None:
            return self._lots.original_unit_cogs(returned_line_id)
        return quantize_cost(to_decimal(product.cost))

    def delete_credit_note(self, document_id: int) -> DeleteResult:
        return self._delete_inbound(document_id, DocumentKind.CREDIT_NOTE.value)
