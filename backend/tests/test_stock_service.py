# Overview: Pytest coverage for FIFO stock allocation and virtual-product bundles.

"""
Stock Allocation Tests

Lots are Purchase rows; these tests pin down:
1. FIFO order (oldest purchase_date first)
2. All-or-nothing per item (a failed item touches no lot)
3. Capped, exact restoration
4. Virtual product availability and cost previews
"""

import pytest

from invoicing.extensions import db
from invoicing.models import Purchase
from invoicing.services import stock_service
from invoicing.services.stock_service import StockError


def _remaining(purchase_id: int) -> int:
    return db.session.get(Purchase, purchase_id).remaining


class TestVariantFifo:
    """deduct_variant / restore_variant across several lots."""

    def test_oldest_lot_consumed_first(self, db_session, make_purchase):
        """Lots A (older, 5) and B (newer, 10); deducting 7 leaves A=0, B=8."""
        lot_b = make_purchase(quantity=10, purchase_date="2026-02-01T00:00:00Z")
        lot_a = make_purchase(quantity=5, purchase_date="2026-01-01T00:00:00Z")

        allocations = stock_service.deduct_variant("P1", "V1", 7)
        db_session.commit()

        assert allocations == [
            {"purchase_id": lot_a.id, "quantity": 5},
            {"purchase_id": lot_b.id, "quantity": 2},
        ]
        assert _remaining(lot_a.id) == 0
        assert _remaining(lot_b.id) == 8

    def test_insufficient_variant_stock_touches_nothing(self, db_session, make_purchase):
        lot_a = make_purchase(quantity=5, purchase_date="2026-01-01T00:00:00Z")
        lot_b = make_purchase(quantity=10, purchase_date="2026-02-01T00:00:00Z")

        with pytest.raises(StockError, match="Available: 15, Requested: 16"):
            stock_service.deduct_variant("P1", "V1", 16)

        assert _remaining(lot_a.id) == 5
        assert _remaining(lot_b.id) == 10

    def test_restore_is_newest_first_and_capped(self, db_session, make_purchase):
        lot_a = make_purchase(quantity=5, purchase_date="2026-01-01T00:00:00Z")
        lot_b = make_purchase(quantity=10, purchase_date="2026-02-01T00:00:00Z")
        stock_service.deduct_variant("P1", "V1", 12)
        db_session.commit()
        assert _remaining(lot_a.id) == 0
        assert _remaining(lot_b.id) == 3

        placed = stock_service.restore_variant("P1", "V1", 20)
        db_session.commit()

        assert placed == 12
        assert _remaining(lot_a.id) == 5
        assert _remaining(lot_b.id) == 10

    def test_zero_quantity_rejected(self, db_session, make_purchase):
        make_purchase(quantity=5)
        with pytest.raises(StockError):
            stock_service.deduct_variant("P1", "V1", 0)


class TestLineItems:
    """deduct_item / restore_item for purchase-bound and manual items."""

    def test_purchase_item_draws_from_its_lot(self, db_session, make_purchase):
        lot = make_purchase(quantity=5)

        allocations = stock_service.deduct_item({"purchase_id": lot.id, "quantity": 3})
        db_session.commit()

        assert allocations == [{"purchase_id": lot.id, "quantity": 3}]
        assert _remaining(lot.id) == 2

    def test_insufficient_lot_stock_fails_without_mutation(self, db_session, make_purchase):
        lot = make_purchase(quantity=5)

        with pytest.raises(StockError) as exc_info:
            stock_service.deduct_item({"purchase_id": lot.id, "quantity": 6})

        assert str(exc_info.value) == (
            f"Insufficient stock in purchase {lot.purchase_number}. Available: 5, Requested: 6"
        )
        assert _remaining(lot.id) == 5

    def test_missing_purchase(self, db_session):
        with pytest.raises(StockError, match="Purchase 999 not found"):
            stock_service.deduct_item({"purchase_id": 999, "quantity": 1})

    def test_manual_item_has_no_stock_obligation(self, db_session):
        assert stock_service.deduct_item({"product_name": "Labour", "quantity": 2}) == []

    def test_restore_uses_recorded_allocations(self, db_session, make_purchase):
        lot = make_purchase(quantity=5)
        allocations = stock_service.deduct_item({"purchase_id": lot.id, "quantity": 4})
        db_session.commit()

        stock_service.restore_item({"purchase_id": lot.id, "quantity": 4, "allocations": allocations})
        db_session.commit()

        assert _remaining(lot.id) == 5

    def test_restore_never_exceeds_original_quantity(self, db_session, make_purchase):
        lot = make_purchase(quantity=5)
        stock_service.deduct_item({"purchase_id": lot.id, "quantity": 1})
        db_session.commit()

        stock_service.restore_item({"purchase_id": lot.id, "quantity": 3})
        db_session.commit()

        assert _remaining(lot.id) == 5


class TestBatch:
    """deduct_stock collects per-item failures instead of raising."""

    def test_partial_batch_reports_errors(self, db_session, make_purchase):
        good = make_purchase(quantity=5)
        short = make_purchase(quantity=1, product_id="P9", variant_id="V9")

        result = stock_service.deduct_stock([
            {"product_name": "Good", "purchase_id": good.id, "quantity": 2},
            {"product_name": "Short", "purchase_id": short.id, "quantity": 3},
            {"product_name": "Labour", "quantity": 1},
        ])

        assert result["success"] is False
        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith("Short: Insufficient stock in purchase")
        assert result["deductions"] == [
            {"index": 0, "allocations": [{"purchase_id": good.id, "quantity": 2}]},
        ]
        assert _remaining(good.id) == 3
        assert _remaining(short.id) == 1

    def test_restore_stock_round_trip(self, db_session, make_purchase):
        lot = make_purchase(quantity=5)
        deducted = stock_service.deduct_stock([{"product_name": "Good", "purchase_id": lot.id, "quantity": 5}])
        assert deducted["success"] is True
        assert _remaining(lot.id) == 0

        restored = stock_service.restore_stock([{
            "product_name": "Good",
            "purchase_id": lot.id,
            "quantity": 5,
            "allocations": deducted["deductions"][0]["allocations"],
        }])

        assert restored == {"success": True, "errors": []}
        assert _remaining(lot.id) == 5


class TestVirtualProducts:
    """Bundles explode into component lots, all-or-nothing per item."""

    def test_availability_is_limited_by_scarcest_component(self, db_session, make_purchase, gift_box):
        make_purchase(quantity=10, product_id="P1", variant_id="V1")
        make_purchase(quantity=3, product_id="P2", variant_id="V2")

        assert stock_service.get_virtual_product_availability(gift_box.id) == 3

    def test_deduction_is_all_or_nothing(self, db_session, make_purchase, gift_box):
        p1 = make_purchase(quantity=10, product_id="P1", variant_id="V1")
        p2 = make_purchase(quantity=1, product_id="P2", variant_id="V2")

        with pytest.raises(StockError, match="Insufficient stock for component P2-V2. Need: 2, Available: 1"):
            stock_service.deduct_item({"virtual_product_id": gift_box.id, "quantity": 2})

        assert _remaining(p1.id) == 10
        assert _remaining(p2.id) == 1

    def test_deduction_draws_every_component(self, db_session, make_purchase, gift_box):
        p1 = make_purchase(quantity=10, product_id="P1", variant_id="V1")
        p2 = make_purchase(quantity=5, product_id="P2", variant_id="V2")

        allocations = stock_service.deduct_item({"virtual_product_id": gift_box.id, "quantity": 2})
        db_session.commit()

        assert sorted(a["quantity"] for a in allocations) == [2, 4]
        assert _remaining(p1.id) == 6
        assert _remaining(p2.id) == 3

        stock_service.restore_item({"virtual_product_id": gift_box.id, "quantity": 2, "allocations": allocations})
        db_session.commit()
        assert _remaining(p1.id) == 10
        assert _remaining(p2.id) == 5

    def test_fifo_cost_preview(self, db_session, make_purchase, gift_box):
        make_purchase(quantity=10, unit_price_cents=100, product_id="P1", variant_id="V1")
        make_purchase(quantity=5, unit_price_cents=300, product_id="P2", variant_id="V2")

        cost = stock_service.calculate_virtual_product_fifo_cost(gift_box.id, 2)

        assert cost["can_fulfill"] is True
        assert cost["total_component_cost_cents"] == 4 * 100 + 2 * 300
        assert cost["total_custom_expenses_cents"] == 100
        assert cost["total_cost_cents"] == 1100

    def test_fifo_cost_preview_reports_shortage(self, db_session, make_purchase, gift_box):
        make_purchase(quantity=10, product_id="P1", variant_id="V1")

        cost = stock_service.calculate_virtual_product_fifo_cost(gift_box.id, 1)

        assert cost["can_fulfill"] is False
        assert cost["errors"] == ["Insufficient stock for component P2-V2. Need: 1, Available: 0"]
