import importlib.util
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from costing.models import DocumentLine, Product

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "recalculate_all.py"


@pytest.fixture
def script(session_factory, monkeypatch):
    spec = importlib.util.spec_from_file_location("recalculate_all", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    monkeypatch.setattr(module, "get_session", session_factory)
    return module


@pytest.fixture
def history(db, make_product, buy, sell):
    product = make_product(sku="WID-1")
    buy("WID-1", 10, 2, datetime(2024, 1, 1))
    sale = sell("WID-1", 3, datetime(2024, 1, 2))
    return product.id, sale.document.lines[0].id


def test_dry_run_reports_without_writing(script, history, capsys):
    assert script.main(["--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "WID-1: 1 line(s) from 2024-01-02T00:00:00" in out


def test_unknown_sku(script, history, capsys):
    assert script.main(["--sku", "NOPE"]) == 1
    assert "unknown SKU NOPE" in capsys.readouterr().err


def test_full_run(script, history, db, capsys):
    product_id, line_id = history
    db.get(Product, product_id).cost = Decimal("50")
    db.commit()

    assert script.main(["--sku", "WID-1"]) == 0

    out = capsys.readouterr().out
    assert "Products recalculated: 1" in out
    assert "Cost caches refreshed: 1" in out
    db.expire_all()
    assert db.get(Product, product_id).cost == Decimal("2")
    assert db.get(DocumentLine, line_id).cost_of_goods_sold == Decimal("6")
