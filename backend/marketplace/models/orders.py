from __future__ import annotations

import json
from enum import IntEnum

from ..extensions import db
from ..time_utils import to_utc_z


class OrderStatus(IntEnum):
    NEW = 0
    ACCEPTED = 1
    READY = 2
    OUT_FOR_DELIVERY = 3
    DELIVERED = 4
    CANCELED = 5
    PAYMENT_FAILED = 6
    UNPAID = 66


STATUS_NAMES = {
    OrderStatus.NEW: "New order",
    OrderStatus.ACCEPTED: "Accepted by store",
    OrderStatus.READY: "Ready for pickup",
    OrderStatus.OUT_FOR_DELIVERY: "Out for delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELED: "Canceled",
    OrderStatus.PAYMENT_FAILED: "Payment failed",
    OrderStatus.UNPAID: "Unpaid",
}


class Order(db.Model):
    """
    Customer order placed with a business.

    WHY no status column: the current status is always derived from
    order_status_events (newest event wins), so history is never overwritten.

    delivery_price and bonus are fixed at creation. payment_id is the bank's
    payment-hold (authorization) reference, set upstream once the hold succeeds.
    extra is a JSON document; settlement merges its audit trail into it.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_business_created", "business_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    address_id = db.Column(db.Integer, nullable=True)

    delivery_type = db.Column(db.String(16), nullable=False, default="DELIVERY")
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    delivery_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    bonus = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    payment_id = db.Column(db.String(128), nullable=True)
    extra = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("orders", lazy=True))

    def extra_dict(self) -> dict:
        if not self.extra:
            return {}
        try:
            data = json.loads(self.extra)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "address_id": self.address_id,
            "delivery_type": self.delivery_type,
            "delivery_date": to_utc_z(self.delivery_date),
            "delivery_price": str(self.delivery_price) if self.delivery_price is not None else None,
            "bonus": str(self.bonus) if self.bonus is not None else None,
            "payment_id": self.payment_id,
            "extra": self.extra_dict(),
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusEvent(db.Model):
    """
    Immutable order status fact. Append-only; never updated or deleted.

    Current status = max(log_timestamp), ties broken by id (insertion order).
    """
    __tablename__ = "order_status_events"
    __table_args__ = (
        db.Index("ix_order_status_events_order_ts", "order_id", "log_timestamp", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    status = db.Column(db.Integer, nullable=False)
    is_canceled = db.Column(db.Boolean, nullable=False, default=False)
    log_timestamp = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "status_name": status_name(self.status),
            "is_canceled": self.is_canceled,
            "timestamp": to_utc_z(self.log_timestamp),
        }


class OrderLineItem(db.Model):
    """Item line of an order; id doubles as the relation id for per-item options."""
    __tablename__ = "order_line_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)  # unit price captured at order time

    order = db.relationship("Order", backref=db.backref("lines", lazy=True, order_by="OrderLineItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "price": str(self.price) if self.price is not None else None,
        }


class OrderCost(db.Model):
    """
    The single live cost row of an order.

    cost is the subtotal of recomputed line totals and is overwritten in place
    on every recalculation. version_id makes that overwrite a compare-and-swap:
    a recalculation that read an older version fails with StaleDataError.
    """
    __tablename__ = "order_costs"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_order_costs_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    service_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "cost": str(self.cost) if self.cost is not None else None,
            "service_fee": str(self.service_fee) if self.service_fee is not None else None,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class SettlementLease(db.Model):
    """
    Short-lived per-order mutual exclusion for READY-triggered settlement.

    One row per order at most; a lease past expires_at may be taken over.
    """
    __tablename__ = "settlement_leases"

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), primary_key=True)
    holder = db.Column(db.String(64), nullable=False)
    acquired_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)


def status_name(status: int) -> str:
    try:
        return STATUS_NAMES[OrderStatus(status)]
    except ValueError:
        return "Unknown status"
