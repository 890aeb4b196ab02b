"""
HTTP API tests through FastAPI's TestClient.

The app's session dependency is pointed at the per-test in-memory database.
"""

import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from costing.deps import session_dep
from costing.main import app
from costing.models import AuditLog


@pytest.fixture
def client(session_factory):
    def _session():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_dep] = _session
    yield TestClient(app)
    app.dependency_overrides.clear()


def _post(client, path, body, actor="tester"):
    return client.post(path, json=body, headers={"X-Actor": actor})


@pytest.fixture
def widget(client):
    resp = _post(client, "/products", {"sku": "WID-1", "name": "Widget"})
    assert resp.status_code == 200
    return resp.json()


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_create_product_generates_sku(client):
    resp = _post(client, "/products", {"name": "Unnamed", "cost": "2.5"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["sku"] == "SKU000001"
    assert Decimal(body["cost"]) == Decimal("2.5")


def test_duplicate_sku_conflicts(client, widget):
    resp = _post(client, "/products", {"sku": "WID-1", "name": "Again"})

    assert resp.status_code == 409


def test_sale_flow_with_shortfall_warning(client, widget):
    purchase = _post(
        client,
        "/purchases",
        {"document_date": "2024-01-01T00:00:00", "lines": [{"sku": "WID-1", "quantity": "5", "unit_cost": "2"}]},
    )
    assert purchase.status_code == 200
    assert purchase.json()["document"]["number"] == "PI-000001"

    sale = _post(
        client,
        "/sales",
        {"document_date": "2024-01-02T00:00:00", "lines": [{"sku": "WID-1", "quantity": "8"}]},
    )

    assert sale.status_code == 200
    body = sale.json()
    assert Decimal(body["document"]["lines"][0]["cost_of_goods_sold"]) == Decimal("10")
    assert len(body["warnings"]) == 1
    assert "Shortfall of 3.00 units" in body["warnings"][0]

    stock = client.get("/stock/WID-1").json()
    assert Decimal(stock["quantity"]) == Decimal("0")

    doc = client.get(f"/documents/{body['document']['id']}")
    assert doc.status_code == 200
    assert doc.json()["kind"] == "SALES_INVOICE"


def test_backdated_purchase_shows_in_cost_audit(client, widget):
    _post(client, "/purchases", {"document_date": "2024-01-01T00:00:00", "lines": [{"sku": "WID-1", "quantity": "2", "unit_cost": "1"}]})
    _post(client, "/sales", {"document_date": "2024-01-05T00:00:00", "lines": [{"sku": "WID-1", "quantity": "4"}]})

    resp = _post(
        client,
        "/purchases",
        {"document_date": "2024-01-03T00:00:00", "lines": [{"sku": "WID-1", "quantity": "2", "unit_cost": "3"}]},
    )

    assert resp.json()["recalculated_skus"] == ["WID-1"]
    audit = client.get("/stock/WID-1/cost-audit").json()
    assert len(audit) == 1
    assert Decimal(audit[0]["old_cogs"]) == Decimal("2")
    assert Decimal(audit[0]["new_cogs"]) == Decimal("8")
    assert audit[0]["reason"] == "backdated_purchase"


def test_preview_and_manual_recalculation(client, widget):
    _post(client, "/purchases", {"document_date": "2024-01-01T00:00:00", "lines": [{"sku": "WID-1", "quantity": "10", "unit_cost": "3"}]})
    _post(client, "/sales", {"document_date": "2024-01-02T00:00:00", "lines": [{"sku": "WID-1", "quantity": "1"}]})

    preview = client.get("/stock/WID-1/preview", params={"quantity": "4", "as_of": "2024-01-05T00:00:00"})
    assert preview.status_code == 200
    assert Decimal(preview.json()["total_cost"]) == Decimal("12")
    assert len(preview.json()["draws"]) == 1

    recalc = _post(client, "/stock/WID-1/recalculate", {})
    assert recalc.status_code == 200
    assert recalc.json()["lines_replayed"] == 1
    assert recalc.json()["lines_changed"] == 0


def test_lot_cost_update(client, widget):
    _post(client, "/purchases", {"document_date": "2024-01-01T00:00:00", "lines": [{"sku": "WID-1", "quantity": "10", "unit_cost": "3"}]})
    _post(client, "/sales", {"document_date": "2024-01-02T00:00:00", "lines": [{"sku": "WID-1", "quantity": "2"}]})
    lot_id = client.get("/stock/WID-1").json()["lots"][0]["id"]

    resp = client.put(f"/lots/{lot_id}/cost", json={"unit_cost": "4"})

    assert resp.status_code == 200
    assert resp.json()["lines_changed"] == 1


def test_unknown_product_is_404_with_code(client):
    resp = client.get("/stock/NOPE")

    assert resp.status_code == 404
    assert resp.json()["code"] == "PRODUCT_NOT_FOUND"


def test_zero_quantity_is_rejected(client, widget):
    resp = _post(client, "/sales", {"lines": [{"sku": "WID-1", "quantity": "0"}]})

    assert resp.status_code == 422


def test_debit_note_over_stock_conflicts(client, widget):
    resp = _post(client, "/debit-notes", {"lines": [{"sku": "WID-1", "quantity": "1"}]})

    assert resp.status_code == 409
    assert resp.json()["code"] == "INSUFFICIENT_STOCK"


def test_mutations_are_audited_with_actor(client, widget, session_factory):
    _post(client, "/purchases", {"document_date": "2024-01-01T00:00:00", "lines": [{"sku": "WID-1", "quantity": "1", "unit_cost": "1"}]}, actor="carol")

    db = session_factory()
    try:
        rows = list(db.scalars(select(AuditLog).order_by(AuditLog.id)))
    finally:
        db.close()

    assert [(r.actor, r.action) for r in rows] == [("tester", "product_create"), ("carol", "purchase_create")]
    assert json.loads(rows[1].detail)["lines"] == 1
