"""
Tests for stock lot creation, removal, cost changes and stock queries.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from costing.exceptions import InvalidDocumentError, InvalidQuantityError, StockLotNotFoundError
from costing.models import LotSource, Product
from costing.repositories.stock_repository import StockRepository


def jan(day: int, hour: int = 0) -> datetime:
    return datetime(2024, 1, day, hour)


class TestCreateLot:
    def test_sequence_increments_per_product(self, db, add_lot, make_product):
        first_product = make_product(sku="WID-1")
        second_product = make_product(sku="WID-2", name="Other")

        a = add_lot(first_product, 1, 1, jan(1))
        b = add_lot(first_product, 1, 1, jan(1))
        c = add_lot(second_product, 1, 1, jan(1))

        assert (a.sequence, b.sequence, c.sequence) == (1, 2, 1)
        assert db.get(Product, first_product.id).lot_sequence == 2

    def test_purchase_and_opening_stock_refresh_cost_cache(self, db, add_lot, make_product):
        product = make_product(cost="1")

        add_lot(product, 5, 4, jan(1))
        assert product.cost == Decimal("4")

        add_lot(product, 5, 6, jan(2), source=LotSource.OPENING_STOCK.value)
        assert product.cost == Decimal("6")

    def test_return_lot_leaves_cost_cache_alone(self, db, add_lot, make_product):
        product = make_product(cost="1")

        add_lot(product, 5, 9, jan(1), source=LotSource.RETURN.value)

        assert product.cost == Decimal("1")

    def test_pre_discount_cost_is_cached(self, db, lots, make_product):
        product = make_product()

        lots.create_lot(product.id, LotSource.PURCHASE.value, 5, Decimal("9"), jan(1), original_unit_cost=Decimal("10"))

        assert product.cost == Decimal("10")

    def test_rejects_bad_input(self, lots, make_product):
        product = make_product()

        with pytest.raises(InvalidQuantityError):
            lots.create_lot(product.id, LotSource.PURCHASE.value, 0, 1, jan(1))
        with pytest.raises(InvalidDocumentError):
            lots.create_lot(product.id, LotSource.PURCHASE.value, 1, -1, jan(1))
        with pytest.raises(InvalidDocumentError):
            lots.create_lot(product.id, "GIFT", 1, 1, jan(1))


class TestDeleteLot:
    def test_unconsumed_lot(self, lots, add_lot, make_product):
        product = make_product()
        lot = add_lot(product, 5, 1, jan(1))

        removal = lots.delete_lot(lot.id)

        assert removal.needs_recalculation is False
        assert lots.product_stock(product.id).quantity == Decimal("0")

    def test_consumed_lot_drops_its_consumptions(self, db, fifo, lots, add_lot, make_product, make_sale_line):
        product = make_product()
        lot = add_lot(product, 5, 1, jan(1))
        line = make_sale_line(product, 2, jan(2))
        fifo.cost_line(line, jan(2))

        removal = lots.delete_lot(lot.id)

        assert removal.needs_recalculation is True
        assert removal.lot_date == jan(1)
        assert StockRepository(db).consumptions_for_line(line.id) == []

    def test_other_lots_stay_conserved(self, fifo, lots, add_lot, make_product, make_sale_line, assert_conserved):
        product = make_product()
        first = add_lot(product, 2, 1, jan(1))
        second = add_lot(product, 5, 2, jan(2))
        line = make_sale_line(product, 4, jan(3))
        fifo.cost_line(line, jan(3))

        lots.delete_lot(first.id)

        assert second.remaining_quantity == Decimal("3")
        assert_conserved(product.id)

    def test_missing_lot(self, lots):
        with pytest.raises(StockLotNotFoundError):
            lots.delete_lot(12345)


class TestUpdateLotCost:
    def test_recosts_sales_from_the_lot_date(
        self, db, fifo, lots, add_lot, make_product, make_sale_line, assert_conserved
    ):
        product = make_product()
        lot = add_lot(product, 10, 2, jan(1))
        line = make_sale_line(product, 3, jan(2))
        fifo.cost_line(line, jan(2))

        result = lots.update_lot_cost(lot.id, Decimal("2.5"), triggered_by="bob")

        assert result.reason == "lot_cost_change"
        assert line.cost_of_goods_sold == Decimal("7.5")
        assert len(result.changes) == 1
        assert_conserved(product.id)

    def test_negative_cost(self, lots, add_lot, make_product):
        product = make_product()
        lot = add_lot(product, 10, 2, jan(1))

        with pytest.raises(InvalidDocumentError):
            lots.update_lot_cost(lot.id, Decimal("-1"))


class TestStockQueries:
    def test_product_stock_valuation(self, lots, add_lot, make_product):
        product = make_product(sku="WID-1", name="Widget")
        add_lot(product, 10, 1, jan(1))
        add_lot(product, 10, 2, jan(2))

        stock = lots.product_stock(product.id)

        assert stock.sku == "WID-1"
        assert stock.quantity == Decimal("20")
        assert stock.total_value == Decimal("30")
        assert stock.average_cost == Decimal("1.5")
        assert [lot.sequence for lot in stock.lots] == [1, 2]

    def test_empty_stock(self, lots, make_product):
        product = make_product()

        stock = lots.product_stock(product.id)

        assert stock.quantity == Decimal("0")
        assert stock.average_cost == Decimal("0")

    def test_returnable_stock(self, lots, add_lot, make_product):
        product = make_product()
        add_lot(product, 4, 1, jan(1))

        assert lots.returnable_stock(product.id, 3).can_return is True
        short = lots.returnable_stock(product.id, 6)
        assert short.can_return is False
        assert short.shortfall == Decimal("2")

    def test_returnable_stock_as_of_ignores_later_lots(self, lots, add_lot, make_product):
        product = make_product()
        add_lot(product, 4, 1, jan(1))
        add_lot(product, 6, 1, jan(5))

        assert lots.returnable_stock(product.id, 5).can_return is True
        early = lots.returnable_stock(product.id, 5, as_of=jan(3))
        assert early.can_return is False
        assert early.available == Decimal("4")

    def test_original_unit_cogs(self, fifo, lots, add_lot, make_product, make_sale_line):
        product = make_product()
        add_lot(product, 2, 1, jan(1))
        add_lot(product, 2, 4, jan(2))
        line = make_sale_line(product, 4, jan(3))
        fifo.cost_line(line, jan(3))

        assert lots.original_unit_cogs(line.id) == Decimal("2.5")
