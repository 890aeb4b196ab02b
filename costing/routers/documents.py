from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from costing.audit import log_event
from costing.deps import actor_dep, session_dep
from costing.schemas import (
    CreditNoteCreate,
    DebitNoteCreate,
    DeleteResult,
    DocumentRead,
    DocumentResult,
    InboundCreate,
    SaleCreate,
    SaleUpdate,
)
from costing.services.document_service import DocumentService

router = APIRouter(tags=["documents"])


def document_service_dep(db: Session = Depends(session_dep)) -> DocumentService:
    return DocumentService(db)


def _audit_saved(service: DocumentService, actor: Optional[str], action: str, result: DocumentResult) -> None:
    log_event(
        service._db,
        actor,
        action=action,
        entity_type="document",
        entity_id=result.document.number,
        detail={
            "lines": len(result.document.lines),
            "warnings": len(result.warnings),
            "recalculated_skus": result.recalculated_skus,
        },
    )


def _audit_deleted(service: DocumentService, actor: Optional[str], action: str, result: DeleteResult) -> None:
    log_event(
        service._db,
        actor,
        action=action,
        entity_type="document",
        entity_id=result.number,
        detail={"recalculated_skus": result.recalculated_skus},
    )


@router.get("/documents/{document_id}", response_model=DocumentRead)
def get_document(
    document_id: int,
    service: DocumentService = Depends(document_service_dep),
) -> DocumentRead:
    return service.get_document(document_id)


@router.post("/sales", response_model=DocumentResult)
def create_sale(
    payload: SaleCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DocumentResult:
    result = service.create_sale(payload)
    _audit_saved(service, actor, "sale_create", result)
    return result


@router.put("/sales/{document_id}", response_model=DocumentResult)
def update_sale(
    document_id: int,
    payload: SaleUpdate,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DocumentResult:
    result = service.update_sale(document_id, payload)
    _audit_saved(service, actor, "sale_update", result)
    return result


@router.delete("/sales/{document_id}", response_model=DeleteResult)
def delete_sale(
    document_id: int,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DeleteResult:
    result = service.delete_sale(document_id)
    _audit_deleted(service, actor, "sale_delete", result)
    return result


@router.post("/purchases", response_model=DocumentResult)
def create_purchase(
    payload: InboundCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DocumentResult:
    result = service.create_purchase(payload)
    _audit_saved(service, actor, "purchase_create", result)
    return result


@router.put("/purchases/{document_id}", response_model=DocumentResult)
def update_purchase(
    document_id: int,
    payload: InboundCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DocumentResult:
    result = service.update_purchase(document_id, payload)
    _audit_saved(service, actor, "purchase_update", result)
    return result


@router.delete("/purchases/{document_id}", response_model=DeleteResult)
def delete_purchase(
    document_id: int,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DeleteResult:
    result = service.delete_purchase(document_id)
    _audit_deleted(service, actor, "purchase_delete", result)
    return result


@router.post("/opening-stock", response_model=DocumentResult)
def create_opening_stock(
    payload: InboundCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DocumentResult:
    result = service.create_opening_stock(payload)
    _audit_saved(service, actor, "opening_stock_create", result)
    return result


@router.put("/opening-stock/{document_id}", response_model=DocumentResult)
def update_opening_stock(
    document_id: int,
    payload: InboundCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DocumentResult:
    result = service.update_opening_stock(document_id, payload)
    _audit_saved(service, actor, "opening_stock_update", result)
    return result


@router.delete("/opening-stock/{document_id}", response_model=DeleteResult)
def delete_opening_stock(
    document_id: int,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DeleteResult:
    result = service.delete_opening_stock(document_id)
    _audit_deleted(service, actor, "opening_stock_delete", result)
    return result


@router.post("/credit-notes", response_model=DocumentResult)
def create_credit_note(
    payload: CreditNoteCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DocumentResult:
    result = service.create_credit_note(payload)
    _audit_saved(service, actor, "credit_note_create", result)
    return result


@router.delete("/credit-notes/{document_id}", response_model=DeleteResult)
def delete_credit_note(
    document_id: int,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DeleteResult:
    result = service.delete_credit_note(document_id)
    _audit_deleted(service, actor, "credit_note_delete", result)
    return result


@router.post("/debit-notes", response_model=DocumentResult)
def create_debit_note(
    payload: DebitNoteCreate,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DocumentResult:
    result = service.create_debit_note(payload)
    _audit_saved(service, actor, "debit_note_create", result)
    return result


@router.delete("/debit-notes/{document_id}", response_model=DeleteResult)
def delete_debit_note(
    document_id: int,
    actor: Optional[str] = Depends(actor_dep),
    service: DocumentService = Depends(document_service_dep),
) -> DeleteResult:
    result = service.delete_debit_note(document_id)
    _audit_deleted(service, actor, "debit_note_delete", result)
    return result
