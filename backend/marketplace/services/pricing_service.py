# Overview: Service-layer pricing; resolves effective item prices from catalog and active promotions.

"""
Pricing Resolver

WHY: Settlement charges what the items cost at the moment the merchant marks
the order ready, not what they cost when the cart was built. Prices are read
live from the catalog and combined with whatever promotion is active "now".

DESIGN:
- Each promotion mechanism is a PricingStrategy keyed by PromotionDetail.type.
  Strategies price a whole line (base price x quantity) so quantity-break
  mechanisms fit the same interface as percentage discounts.
- SUBTRACT is registered like any other strategy and can be replaced with
  register_strategy() without touching the resolver or the cost aggregator.
- Tie-break: when several active details target one item, the one producing
  the lowest line total for the quantity being priced wins; equal totals go
  to the lowest detail id. There is no priority column, so the rule must not
  depend on query order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping, Protocol

from sqlalchemy import and_

from ..extensions import db
from ..models import Item, Promotion, PromotionDetail
from ..models.promotions import PROMO_TYPE_PERCENT, PROMO_TYPE_SUBTRACT
from ..time_utils import utcnow
from ..validation import MONEY_QUANT, to_money


# Legacy detail type spelling still present in older promotion rows
PROMO_TYPE_ALIASES = {"DISCOUNT": PROMO_TYPE_PERCENT}


class PricingStrategy(Protocol):
    def line_total(self, base_price: Decimal, quantity: int, detail: PromotionDetail) -> Decimal:
        ...


class PercentStrategy:
    """resolved unit = base * (1 - discount/100), clamped at zero."""

    def unit_price(self, base_price: Decimal, detail: PromotionDetail) -> Decimal:
        discount = Decimal(detail.discount or 0)
        unit = base_price * (Decimal(1) - discount / Decimal(100))
        if unit < 0:
            unit = Decimal(0)
        return unit.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)

    def line_total(self, base_price: Decimal, quantity: int, detail: PromotionDetail) -> Decimal:
        return self.unit_price(base_price, detail) * quantity


class QuantityBreakStrategy:
    """
    "Buy base_amount, get add_amount extra" over full and partial sets.

    With set = base + add: charged = (q // set) * base + min(q % set, base).
    Below base_amount nothing is free.
    """

    def charged_quantity(self, quantity: int, base_amount: int, add_amount: int) -> int:
        if base_amount <= 0 or add_amount <= 0 or quantity < base_amount:
            return quantity
        full_sets, remainder = divmod(quantity, base_amount + add_amount)
        return full_sets * base_amount + min(remainder, base_amount)

    def line_total(self, base_price: Decimal, quantity: int, detail: PromotionDetail) -> Decimal:
        charged = self.charged_quantity(quantity, int(detail.base_amount or 0), int(detail.add_amount or 0))
        return base_price * charged


_STRATEGIES: dict[str, PricingStrategy] = {
    PROMO_TYPE_PERCENT: PercentStrategy(),
    PROMO_TYPE_SUBTRACT: QuantityBreakStrategy(),
}


def register_strategy(promo_type: str, strategy: PricingStrategy) -> PricingStrategy | None:
    """Install a strategy for a detail type; returns the one it replaced."""
    previous = _STRATEGIES.get(promo_type)
    _STRATEGIES[promo_type] = strategy
    return previous


def get_strategy(promo_type: str) -> PricingStrategy | None:
    promo_type = PROMO_TYPE_ALIASES.get(promo_type, promo_type)
    return _STRATEGIES.get(promo_type)


@dataclass
class ResolvedPrice:
    item_id: int
    base_price: Decimal
    detail: PromotionDetail | None = None

    @property
    def promotion_detail_id(self) -> int | None:
        return self.detail.id if self.detail is not None else None

    def line_total(self, quantity: int) -> Decimal:
        if quantity <= 0:
            return Decimal("0.00")
        if self.detail is None:
            return to_money(self.base_price * quantity)
        strategy = get_strategy(self.detail.type)
        total = strategy.line_total(self.base_price, quantity, self.detail)
        return to_money(max(total, Decimal(0)))

    def unit_price(self, quantity: int = 1) -> Decimal:
        """Effective (blended for quantity breaks) unit price."""
        if quantity <= 0:
            quantity = 1
        return to_money(self.line_total(quantity) / quantity)


def get_active_details(
    business_id: int,
    item_ids: Iterable[int],
    now: datetime,
) -> dict[int, list[PromotionDetail]]:
    """Details under the business's promotions active at `now`, grouped by item."""
    ids = sorted({int(i) for i in item_ids})
    if not ids:
        return {}

    details = (
        db.session.query(PromotionDetail)
        .join(Promotion, Promotion.id == PromotionDetail.promotion_id)
        .filter(
            and_(
                Promotion.business_id == business_id,
                Promotion.is_active_at(now),
                PromotionDetail.item_id.in_(ids),
            )
        )
        .order_by(PromotionDetail.id.asc())
        .all()
    )

    grouped: dict[int, list[PromotionDetail]] = {}
    for detail in details:
        if get_strategy(detail.type) is None:
            continue
        grouped.setdefault(detail.item_id, []).append(detail)
    return grouped


def _pick_detail(
    base_price: Decimal,
    quantity: int,
    candidates: list[PromotionDetail],
) -> PromotionDetail | None:
    best = None
    best_key = None
    for detail in candidates:
        total = get_strategy(detail.type).line_total(base_price, quantity, detail)
        key = (total, detail.id)
        if best_key is None or key < best_key:
            best, best_key = detail, key
    return best


def resolve_prices(
    business_id: int,
    item_ids: Iterable[int],
    now: datetime | None = None,
    quantities: Mapping[int, int] | None = None,
) -> dict[int, ResolvedPrice]:
    """
    Resolve the effective price of each item at `now`.

    Args:
        business_id: Catalog owner; items of other businesses are not returned
        item_ids: Items to price
        now: Evaluation instant (defaults to utcnow())
        quantities: Optional per-item quantity used for the tie-break

    Returns:
        Mapping item_id -> ResolvedPrice for every item found in the catalog
    """
    now = now or utcnow()
    ids = sorted({int(i) for i in item_ids})
    if not ids:
        return {}

    items = (
        db.session.query(Item)
        .filter(Item.business_id == business_id, Item.id.in_(ids))
        .all()
    )
    active = get_active_details(business_id, ids, now)
    quantities = quantities or {}

    resolved: dict[int, ResolvedPrice] = {}
    for item in items:
        base_price = to_money(item.price)
        candidates = active.get(item.id, [])
        quantity = max(1, int(quantities.get(item.id, 1)))
        resolved[item.id] = ResolvedPrice(
            item_id=item.id,
            base_price=base_price,
            detail=_pick_detail(base_price, quantity, candidates),
        )
    return resolved
