from __future__ import annotations

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from costing.models import Document, DocumentLine

NUMBER_PREFIXES = {
    "SALES_INVOICE": "INV",
    "POS_SALE": "POS",
    "DEBIT_NOTE": "DN",
    "PURCHASE": "PI",
    "OPENING_STOCK": "OS",
    "CREDIT_NOTE": "CN",
}


class DocumentRepository:
    def __init__(self, db: Session):
        self._db = db

    def get(self, document_id: int) -> Optional[Document]:
        return self._db.get(Document, document_id)

    def get_line(self, line_id: int) -> Optional[DocumentLine]:
        return self._db.get(DocumentLine, line_id)

    def add(self, document: Document) -> None:
        self._db.add(document)
        self._db.flush()

    def add_line(self, line: DocumentLine) -> None:
        self._db.add(line)
        self._db.flush()

    def next_number(self, kind: str) -> str:
        prefix = NUMBER_PREFIXES.get(kind, "DOC")
        numbers = self._db.scalars(
            select(Document.number).where(Document.number.like(f"{prefix}-%"))
        ).all()
        max_n = 0
        for number in numbers:
            suffix = number[len(prefix) + 1 :]
            if suffix.isdigit():
                max_n = max(max_n, int(suffix))
        return f"{prefix}-{str(max_n + 1).zfill(6)}"

    def detach_returns(self, line_ids: list[int]) -> None:
        """Clear credit-note references to lines that are about to disappear."""
        if not line_ids:
            return
        self._db.execute(
            update(DocumentLine)
            .where(DocumentLine.returned_line_id.in_(line_ids))
            .values(returned_line_id=None)
        )
        self._db.flush()

    def delete_line(self, line: DocumentLine) -> None:
        document = line.document
        if document is not None and line in document.lines:
            document.lines.remove(line)
        self._db.delete(line)
        self._db.flush()

    def delete(self, document: Document) -> None:
        self._db.delete(document)
        self._db.flush()
