# Overview: Pytest coverage for order cost recalculation.

from decimal import Decimal

import pytest
from sqlalchemy.orm.exc import StaleDataError

from marketplace.models import OrderCost
from marketplace.services import concurrency
from marketplace.services.cost_service import calculate_order_cost, recalculate_order_cost
from marketplace.validation import NotFoundError


def _cost_row(db_session, order_id):
    db_session.expire_all()
    return db_session.query(OrderCost).filter_by(order_id=order_id).one()


class TestRecalculate:

    def test_subtotal_and_final_amount(self, db_session, make_item, make_order):
        item = make_item("A-1", "500")
        order = make_order([(item, 2)], delivery_price="300", service_fee="50")

        breakdown = recalculate_order_cost(order.id)

        assert breakdown.subtotal == Decimal("1000.00")
        assert breakdown.final_amount == Decimal("1350.00")
        assert breakdown.capture_amount == 1350
        assert _cost_row(db_session, order.id).cost == Decimal("1000.00")

    def test_uses_live_price_not_captured_price(self, db_session, make_item, make_order):
        item = make_item("A-1", "120")
        order = make_order([(item, 1, "100")])

        assert recalculate_order_cost(order.id).subtotal == Decimal("120.00")

    def test_promotion_applied(self, db_session, make_item, make_order, make_promotion):
        item = make_item("A-1", "1000")
        make_promotion([{"item": item, "type": "PERCENT", "discount": 25}])
        order = make_order([(item, 1)])

        breakdown = recalculate_order_cost(order.id)
        assert breakdown.subtotal == Decimal("750.00")
        assert breakdown.lines[0].promotion_detail_id is not None

    def test_bonus_is_subtracted(self, db_session, make_item, make_order):
        item = make_item("A-1", "400")
        order = make_order([(item, 1)], delivery_price="100", bonus="150")
        assert recalculate_order_cost(order.id).final_amount == Decimal("350.00")

    def test_bonus_exceeding_total_gives_nothing_to_capture(self, db_session, make_item, make_order):
        item = make_item("A-1", "100")
        order = make_order([(item, 1)], bonus="500")
        breakdown = recalculate_order_cost(order.id)
        assert breakdown.final_amount == Decimal("-400.00")
        assert breakdown.capture_amount == 0

    def test_item_missing_from_catalog_uses_captured_price(self, db_session, make_item, make_order, other_business):
        item = make_item("A-1", "100")
        order = make_order([(item, 2, "90")])
        item.business_id = other_business.id
        db_session.commit()

        breakdown = recalculate_order_cost(order.id)
        assert breakdown.subtotal == Decimal("180.00")

    def test_split_lines_of_same_item(self, db_session, make_item, make_order, make_promotion):
        item = make_item("A-1", "100")
        make_promotion([{"item": item, "type": "SUBTRACT", "base_amount": 2, "add_amount": 1}])
        order = make_order([(item, 3), (item, 3)])

        breakdown = recalculate_order_cost(order.id)
        assert [line.line_total for line in breakdown.lines] == [Decimal("200.00"), Decimal("200.00")]

    def test_idempotent(self, db_session, make_item, make_order):
        item = make_item("A-1", "333.33")
        order = make_order([(item, 3)], delivery_price="10", service_fee="5")

        first = recalculate_order_cost(order.id)
        second = recalculate_order_cost(order.id)

        assert first.to_dict() == second.to_dict()
        assert _cost_row(db_session, order.id).cost == Decimal("999.99")

    def test_capture_amount_rounds_half_up(self, db_session, make_item, make_order):
        item = make_item("A-1", "100.50")
        order = make_order([(item, 1)])
        assert recalculate_order_cost(order.id).capture_amount == 101

    def test_creates_cost_row_when_missing(self, db_session, make_item, make_order):
        item = make_item("A-1", "100")
        order = make_order([(item, 1)])
        db_session.query(OrderCost).filter_by(order_id=order.id).delete()
        db_session.commit()

        recalculate_order_cost(order.id)
        assert _cost_row(db_session, order.id).cost == Decimal("100.00")

    def test_version_advances_on_each_write(self, db_session, make_item, make_order):
        item = make_item("A-1", "100")
        order = make_order([(item, 1)])

        before = _cost_row(db_session, order.id).version_id
        recalculate_order_cost(order.id)
        item.price = Decimal("110")
        db_session.commit()
        recalculate_order_cost(order.id)

        assert _cost_row(db_session, order.id).version_id == before + 2

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            recalculate_order_cost(424242)


class TestCalculateWithoutWrite:

    def test_does_not_touch_cost_row(self, db_session, make_item, make_order):
        item = make_item("A-1", "500")
        order = make_order([(item, 2)])

        breakdown = calculate_order_cost(order.id)

        assert breakdown.subtotal == Decimal("1000.00")
        row = _cost_row(db_session, order.id)
        assert row.cost == Decimal("0.00")
        assert row.updated_at is None


class TestRetry:

    def test_stale_write_is_retried(self, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda _: None)
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise StaleDataError("order_costs row changed")
            return "ok"

        assert concurrency.run_with_retry(flaky) == "ok"
        assert len(attempts) == 3

    def test_gives_up_after_attempts(self, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda _: None)

        def always_stale():
            raise StaleDataError("order_costs row changed")

        with pytest.raises(StaleDataError):
            concurrency.run_with_retry(always_stale, attempts=2)

    def test_concurrent_writer_loses_compare_and_swap(self, db_session, make_item, make_order):
        item = make_item("A-1", "100")
        order = make_order([(item, 1)])

        row = _cost_row(db_session, order.id)
        db_session.execute(
            OrderCost.__table__.update()
            .where(OrderCost.order_id == order.id)
            .values(version_id=OrderCost.version_id + 1)
        )
        row.cost = Decimal("1")
        with pytest.raises(StaleDataError):
            db_session.commit()
        db_session.rollback()
