# Overview: Pytest coverage for price resolution against live catalog and promotions.

from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace.models.promotions import PROMO_TYPE_SUBTRACT
from marketplace.services import pricing_service
from marketplace.services.pricing_service import QuantityBreakStrategy, register_strategy, resolve_prices
from marketplace.time_utils import utcnow


class TestResolvePrices:

    def test_no_promotion_returns_base_price(self, db_session, business, make_item):
        item = make_item("A-1", "1000")
        resolved = resolve_prices(business.id, [item.id])
        assert resolved[item.id].unit_price() == Decimal("1000.00")
        assert resolved[item.id].promotion_detail_id is None

    def test_percent_promotion(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "1000")
        make_promotion([{"item": item, "type": "PERCENT", "discount": 25}])

        resolved = resolve_prices(business.id, [item.id])
        assert resolved[item.id].unit_price() == Decimal("750.00")
        assert resolved[item.id].line_total(2) == Decimal("1500.00")

    def test_percent_rounds_half_up(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "0.05")
        make_promotion([{"item": item, "type": "PERCENT", "discount": 50}])
        assert resolve_prices(business.id, [item.id])[item.id].unit_price() == Decimal("0.03")

    def test_full_discount_never_goes_negative(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "300")
        make_promotion([{"item": item, "type": "PERCENT", "discount": 100}])
        assert resolve_prices(business.id, [item.id])[item.id].unit_price() == Decimal("0.00")

    def test_legacy_discount_type_is_percent(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "200")
        make_promotion([{"item": item, "type": "DISCOUNT", "discount": 10}])
        assert resolve_prices(business.id, [item.id])[item.id].unit_price() == Decimal("180.00")

    @pytest.mark.parametrize("window", ["expired", "future", "hidden"])
    def test_inactive_promotions_ignored(self, db_session, business, make_item, make_promotion, window):
        item = make_item("A-1", "1000")
        now = utcnow()
        kwargs = {
            "expired": {"start": now - timedelta(days=10), "end": now - timedelta(days=1)},
            "future": {"start": now + timedelta(days=1), "end": now + timedelta(days=10)},
            "hidden": {"visible": False},
        }[window]
        make_promotion([{"item": item, "type": "PERCENT", "discount": 50}], **kwargs)

        assert resolve_prices(business.id, [item.id])[item.id].unit_price() == Decimal("1000.00")

    def test_evaluated_at_given_instant(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "1000")
        now = utcnow()
        make_promotion(
            [{"item": item, "type": "PERCENT", "discount": 50}],
            start=now + timedelta(days=1),
            end=now + timedelta(days=3),
        )
        later = resolve_prices(business.id, [item.id], now=now + timedelta(days=2))
        assert later[item.id].unit_price() == Decimal("500.00")

    def test_items_of_other_business_not_resolved(self, db_session, business, other_business, make_item):
        foreign = make_item("B-1", "100", business_id=other_business.id)
        assert resolve_prices(business.id, [foreign.id]) == {}

    def test_price_change_visible_immediately(self, db_session, business, make_item):
        item = make_item("A-1", "100")
        item.price = Decimal("120")
        db_session.commit()
        assert resolve_prices(business.id, [item.id])[item.id].base_price == Decimal("120.00")


class TestQuantityBreak:

    @pytest.mark.parametrize("quantity,charged", [
        (1, 1),
        (2, 2),
        (3, 2),
        (4, 3),
        (5, 4),
        (6, 4),
        (7, 5),
    ])
    def test_buy_two_get_one(self, quantity, charged):
        assert QuantityBreakStrategy().charged_quantity(quantity, 2, 1) == charged

    def test_subtract_line_total(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "100")
        make_promotion([{"item": item, "type": PROMO_TYPE_SUBTRACT, "base_amount": 2, "add_amount": 1}])

        resolved = resolve_prices(business.id, [item.id], quantities={item.id: 3})
        assert resolved[item.id].line_total(3) == Decimal("200.00")
        assert resolved[item.id].unit_price(3) == Decimal("66.67")


class TestTieBreak:

    def test_lowest_line_total_wins(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "100")
        _, (ten,) = make_promotion([{"item": item, "type": "PERCENT", "discount": 10}], name="ten")
        _, (thirty,) = make_promotion([{"item": item, "type": "PERCENT", "discount": 30}], name="thirty")

        resolved = resolve_prices(business.id, [item.id])
        assert resolved[item.id].promotion_detail_id == thirty.id
        assert resolved[item.id].promotion_detail_id != ten.id

    def test_winner_depends_on_quantity(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "100")
        _, (percent,) = make_promotion([{"item": item, "type": "PERCENT", "discount": 20}])
        _, (bulk,) = make_promotion([{"item": item, "type": "SUBTRACT", "base_amount": 2, "add_amount": 1}])

        single = resolve_prices(business.id, [item.id], quantities={item.id: 1})
        triple = resolve_prices(business.id, [item.id], quantities={item.id: 3})

        assert single[item.id].promotion_detail_id == percent.id  # 80 < 100
        assert triple[item.id].promotion_detail_id == bulk.id  # 200 < 240

    def test_equal_totals_go_to_lowest_detail_id(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "100")
        _, (first,) = make_promotion([{"item": item, "type": "PERCENT", "discount": 15}])
        make_promotion([{"item": item, "type": "PERCENT", "discount": 15}])

        assert resolve_prices(business.id, [item.id])[item.id].promotion_detail_id == first.id


class TestStrategyRegistry:

    def test_register_strategy_replaces_subtract(self, db_session, business, make_item, make_promotion):
        class FlatOff:
            def line_total(self, base_price, quantity, detail):
                return base_price * quantity - detail.add_amount

        item = make_item("A-1", "100")
        make_promotion([{"item": item, "type": PROMO_TYPE_SUBTRACT, "base_amount": 1, "add_amount": 30}])

        previous = register_strategy(PROMO_TYPE_SUBTRACT, FlatOff())
        try:
            resolved = resolve_prices(business.id, [item.id], quantities={item.id: 2})
            assert resolved[item.id].line_total(2) == Decimal("170.00")
        finally:
            register_strategy(PROMO_TYPE_SUBTRACT, previous)

        assert isinstance(pricing_service.get_strategy(PROMO_TYPE_SUBTRACT), QuantityBreakStrategy)

    def test_unknown_detail_type_ignored(self, db_session, business, make_item, make_promotion):
        item = make_item("A-1", "100")
        make_promotion([{"item": item, "type": "MYSTERY", "discount": 90}])
        assert resolve_prices(business.id, [item.id])[item.id].promotion_detail_id is None
