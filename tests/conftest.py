"""
Pytest fixtures for the costing test suite.

Every test gets its own in-memory SQLite database (one shared connection via
StaticPool) with the full schema created, so tests never see each other's
lots or documents.
"""

import json
import logging
import os
from datetime import datetime
from decimal import Decimal
from io import StringIO

os.environ["DATABASE_URL"] = "sqlite+pysqlite://"
os.environ.setdefault("COSTING_CONFIG_PATH", os.path.join(os.path.dirname(__file__), "missing-costing.conf"))

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from costing.db import Base
from costing.logging_config import StructuredFormatter, configure_logging, reset_logging
from costing.models import Document, DocumentKind, DocumentLine, LotSource, Product, StockLot
from costing.repositories.document_repository import DocumentRepository
from costing.repositories.stock_repository import StockRepository
from costing.schemas import InboundCreate, InboundLineCreate, SaleCreate, SaleLineCreate
from costing.services.document_service import DocumentService
from costing.services.fifo_engine import FifoEngine
from costing.services.recalculation import RecalculationService
from costing.services.stock_lot_service import StockLotService


def jan(day: int, hour: int = 0) -> datetime:
    return datetime(2024, 1, day, hour)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture
def captured_logs():
    """
    Capture costing logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            assert any(r["message"] == "fifo_consumed" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("costing")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def fifo(db) -> FifoEngine:
    return FifoEngine(db)


@pytest.fixture
def recalc(db, fifo) -> RecalculationService:
    return RecalculationService(db, engine=fifo)


@pytest.fixture
def lots(db, fifo, recalc) -> StockLotService:
    return StockLotService(db, engine=fifo, recalculation=recalc)


@pytest.fixture
def documents(db) -> DocumentService:
    return DocumentService(db)


# =============================================================================
# Data builders
# =============================================================================


@pytest.fixture
def make_product(db):
    def _make(sku: str = "WID-1", name: str = "Widget", cost: str = "0") -> Product:
        product = Product(sku=sku, name=name, cost=Decimal(cost), lot_sequence=0)
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def make_sale_line(db):
    """Create a consuming document with one uncosted line."""

    def _make(product: Product, quantity, when: datetime, kind: str = DocumentKind.SALES_INVOICE.value) -> DocumentLine:
        repo = DocumentRepository(db)
        document = Document(kind=kind, number=repo.next_number(kind), document_date=when)
        repo.add(document)
        line = DocumentLine(
            document_id=document.id,
            product_id=product.id,
            quantity=Decimal(str(quantity)),
            cost_of_goods_sold=Decimal("0"),
        )
        repo.add_line(line)
        return line

    return _make


@pytest.fixture
def add_lot(lots):
    def _add(product: Product, quantity, unit_cost, when: datetime, source: str = LotSource.PURCHASE.value):
        return lots.create_lot(product.id, source, Decimal(str(quantity)), Decimal(str(unit_cost)), when)

    return _add


@pytest.fixture
def buy(documents):
    def _buy(sku: str, quantity, unit_cost, when: datetime, discount_pct="0"):
        return documents.create_purchase(
            InboundCreate(
                document_date=when,
                lines=[
                    InboundLineCreate(
                        sku=sku,
                        quantity=Decimal(str(quantity)),
                        unit_cost=Decimal(str(unit_cost)),
                        discount_pct=Decimal(str(discount_pct)),
                    )
                ],
            )
        )

    return _buy


@pytest.fixture
def sell(documents):
    def _sell(sku: str, quantity, when: datetime, kind: str = "SALES_INVOICE"):
        return documents.create_sale(
            SaleCreate(
                kind=kind,
                document_date=when,
                lines=[SaleLineCreate(sku=sku, quantity=Decimal(str(quantity)))],
            )
        )

    return _sell


@pytest.fixture
def assert_conserved(db):
    """Check that every lot of a product has drawn exactly what its consumption rows record."""

    def _check(product_id: int) -> None:
        stock = StockRepository(db)
        lots = db.scalars(
            select(StockLot)
            .where(StockLot.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        for lot in lots:
            assert Decimal("0") <= lot.remaining_quantity <= lot.initial_quantity
            assert lot.initial_quantity - lot.remaining_quantity == stock.consumed_quantity_for_lot(lot.id)

    return _check
