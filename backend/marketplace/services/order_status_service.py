# Overview: Service-layer operations for the order status ledger; append-only events and current-status projection.

"""
Order Status Ledger

Invariants (authoritative)

- Append-only: one immutable OrderStatusEvent per status change, never updated or deleted.
- Current status is a projection: newest log_timestamp wins, ties go to the higher id.
- The ledger records merchant intent as fact; it does not reject "invalid" transitions.
- is_canceled is set only for PAYMENT_FAILED (6).
- Side effects live outside the ledger: subscribers of order_status_appended
  run after the event is committed and can never roll it back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from flask import current_app
from sqlalchemy import func, select

from ..extensions import db
from ..models import Order, OrderStatus, OrderStatusEvent
from ..signals import order_status_appended
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError


def parse_status(value) -> OrderStatus:
    """Accept an int status code (or its string form) and map it to OrderStatus."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("status is required and must be an integer")
    if isinstance(value, str):
        value = value.strip()
        if not value.lstrip("-").isdigit():
            raise ValidationError("status must be an integer")
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError("status must be an integer")
    try:
        return OrderStatus(value)
    except ValueError:
        valid = ", ".join(str(int(s)) for s in OrderStatus)
        raise ValidationError(f"Unknown status {value}. Must be one of: {valid}")


def get_order(order_id: int, business_id: int | None = None) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if business_id is not None:
        query = query.filter_by(business_id=business_id)
    order = query.first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def append_status(
    order_id: int,
    status,
    *,
    business_id: int | None = None,
    occurred_at: datetime | None = None,
) -> OrderStatusEvent:
    """
    Append one status event for an order and notify subscribers.

    Args:
        order_id: Order receiving the event
        status: Status code (see OrderStatus)
        business_id: When given, the order must belong to this business
        occurred_at: Event time (defaults to now)

    Returns:
        The committed OrderStatusEvent

    Raises:
        ValidationError: Unknown status code
        NotFoundError: Order missing or owned by another business
    """
    new_status = parse_status(status)
    get_order(order_id, business_id)

    event = OrderStatusEvent(
        order_id=order_id,
        status=int(new_status),
        is_canceled=new_status == OrderStatus.PAYMENT_FAILED,
        log_timestamp=occurred_at or utcnow(),
    )
    db.session.add(event)
    db.session.commit()

    current_app.logger.info(
        "Order %s status appended: %s (%s)", order_id, int(new_status), new_status.name
    )
    order_status_appended.send(current_app._get_current_object(), event=event)
    return event


def get_current_status(order_id: int) -> OrderStatusEvent | None:
    """Newest event for the order, or None when the ledger is empty."""
    return (
        db.session.query(OrderStatusEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusEvent.log_timestamp.desc(), OrderStatusEvent.id.desc())
        .first()
    )


def get_status_history(order_id: int) -> list[OrderStatusEvent]:
    return (
        db.session.query(OrderStatusEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusEvent.log_timestamp.asc(), OrderStatusEvent.id.asc())
        .all()
    )


def _ranked_events():
    rank = func.row_number().over(
        partition_by=OrderStatusEvent.order_id,
        order_by=(OrderStatusEvent.log_timestamp.desc(), OrderStatusEvent.id.desc()),
    ).label("rn")
    return select(OrderStatusEvent.id, OrderStatusEvent.order_id, rank).subquery()


def get_current_statuses(order_ids: Iterable[int]) -> dict[int, OrderStatusEvent]:
    """Bulk projection of the current status for many orders in one query."""
    ids = sorted({int(i) for i in order_ids})
    if not ids:
        return {}
    ranked = _ranked_events()
    latest_ids = (
        select(ranked.c.id)
        .where(ranked.c.rn == 1)
        .where(ranked.c.order_id.in_(ids))
    )
    events = db.session.query(OrderStatusEvent).filter(OrderStatusEvent.id.in_(latest_ids)).all()
    return {ev.order_id: ev for ev in events}


def count_orders_by_current_status(business_id: int) -> dict[int, int]:
    """Number of the business's orders per current status code."""
    ranked = _ranked_events()
    rows = db.session.execute(
        select(OrderStatusEvent.status, func.count())
        .join(ranked, ranked.c.id == OrderStatusEvent.id)
        .join(Order, Order.id == OrderStatusEvent.order_id)
        .where(ranked.c.rn == 1)
        .where(Order.business_id == business_id)
        .group_by(OrderStatusEvent.status)
    ).all()
    return {int(status): int(count) for status, count in rows}
