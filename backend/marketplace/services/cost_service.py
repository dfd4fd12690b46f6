# Overview: Service-layer cost aggregation; recomputes an order's subtotal and payable amount.

"""
Order Cost Aggregator

WHY: The amount captured from the customer's payment hold must match what the
order is worth when it is handed over. Item prices and promotions may have
changed since checkout, so the subtotal is recomputed from live catalog state.

DESIGN PRINCIPLES:
- Pure computation plus exactly one write: the order's OrderCost row.
- The write is an in-place overwrite (not a history); OrderCost.version_id turns
  it into a compare-and-swap, a lost race is retried with a fresh computation.
- final_amount = subtotal + delivery_price + service_fee - bonus_used
- Idempotent: repeated calls on unchanged inputs return identical numbers.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Order, OrderCost, OrderLineItem
from ..time_utils import utcnow
from ..validation import NotFoundError, to_money
from .concurrency import run_with_retry
from .pricing_service import resolve_prices


@dataclass
class CostLine:
    line_id: int
    item_id: int
    quantity: int
    captured_price: Decimal
    base_price: Decimal
    unit_price: Decimal
    line_total: Decimal
    promotion_detail_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "line_id": self.line_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "captured_price": str(self.captured_price),
            "base_price": str(self.base_price),
            "unit_price": str(self.unit_price),
            "line_total": str(self.line_total),
            "promotion_detail_id": self.promotion_detail_id,
        }


@dataclass
class CostBreakdown:
    order_id: int
    subtotal: Decimal
    delivery_price: Decimal
    service_fee: Decimal
    bonus_used: Decimal
    final_amount: Decimal
    lines: list[CostLine] = field(default_factory=list)

    @property
    def capture_amount(self) -> int:
        """Whole currency units sent to the gateway (half-up)."""
        if self.final_amount <= 0:
            return 0
        return int(self.final_amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "subtotal": str(self.subtotal),
            "delivery_price": str(self.delivery_price),
            "service_fee": str(self.service_fee),
            "bonus_used": str(self.bonus_used),
            "final_amount": str(self.final_amount),
            "capture_amount": self.capture_amount,
            "lines": [line.to_dict() for line in self.lines],
        }


def _compute(order: Order, service_fee: Decimal, now: datetime) -> CostBreakdown:
    lines = (
        db.session.query(OrderLineItem)
        .filter_by(order_id=order.id)
        .order_by(OrderLineItem.id.asc())
        .all()
    )

    quantities: dict[int, int] = defaultdict(int)
    for line in lines:
        quantities[line.item_id] += int(line.quantity)

    resolved = resolve_prices(order.business_id, quantities.keys(), now=now, quantities=quantities)

    cost_lines: list[CostLine] = []
    subtotal = Decimal("0.00")
    for line in lines:
        quantity = int(line.quantity)
        captured = to_money(line.price)
        price = resolved.get(line.item_id)
        if price is None:
            # Item left the catalog since checkout; charge what was agreed then.
            base_price = captured
            line_total = to_money(captured * max(quantity, 0))
            detail_id = None
        else:
            base_price = price.base_price
            line_total = price.line_total(quantity)
            detail_id = price.promotion_detail_id
        unit_price = to_money(line_total / quantity) if quantity > 0 else Decimal("0.00")

        cost_lines.append(CostLine(
            line_id=line.id,
            item_id=line.item_id,
            quantity=quantity,
            captured_price=captured,
            base_price=base_price,
            unit_price=unit_price,
            line_total=line_total,
            promotion_detail_id=detail_id,
        ))
        subtotal += line_total

    delivery_price = to_money(order.delivery_price)
    bonus_used = to_money(order.bonus)
    final_amount = subtotal + delivery_price + service_fee - bonus_used

    return CostBreakdown(
        order_id=order.id,
        subtotal=to_money(subtotal),
        delivery_price=delivery_price,
        service_fee=service_fee,
        bonus_used=bonus_used,
        final_amount=to_money(final_amount),
        lines=cost_lines,
    )


def _get_order(order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def calculate_order_cost(order_id: int, now: datetime | None = None) -> CostBreakdown:
    """Compute the cost breakdown without writing anything."""
    order = _get_order(order_id)
    cost_row = db.session.query(OrderCost).filter_by(order_id=order_id).first()
    service_fee = to_money(cost_row.service_fee) if cost_row else Decimal("0.00")
    return _compute(order, service_fee, now or utcnow())


def recalculate_order_cost(order_id: int, now: datetime | None = None) -> CostBreakdown:
    """
    Recompute the order's subtotal and overwrite its OrderCost row.

    Returns:
        CostBreakdown with subtotal, final_amount and per-line detail

    Raises:
        NotFoundError: Order does not exist
        StaleDataError: OrderCost kept changing under us after all retries
    """
    def _op():
        order = _get_order(order_id)
        cost_row = db.session.query(OrderCost).filter_by(order_id=order_id).first()
        if cost_row is None:
            cost_row = OrderCost(order_id=order_id, cost=Decimal("0.00"), service_fee=Decimal("0.00"))
            db.session.add(cost_row)

        breakdown = _compute(order, to_money(cost_row.service_fee), now or utcnow())

        cost_row.cost = breakdown.subtotal
        cost_row.updated_at = utcnow()
        # UPDATE ... WHERE version_id = <read version>; StaleDataError if someone won the race
        db.session.commit()
        return breakdown

    return run_with_retry(_op)
