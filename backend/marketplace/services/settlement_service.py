# Overview: Settlement orchestration; reacts to READY status events by recalculating cost and capturing payment.

"""
Settlement Orchestrator

WHY: When the merchant marks an order READY the customer's payment hold must
be captured for what the order is actually worth at hand-over time.

FLOW (per READY event):
1. Take the per-order settlement lease (a concurrent READY skips, see below)
2. Recalculate the order cost (overwrites OrderCost.cost)
3. If the order has a payment hold and capture_amount > 0, capture it
4. Success: merge confirmed_payment into Order.extra
5. Any failure: merge settlement_failure into Order.extra, log, append PAYMENT_FAILED

GUARANTEES:
- The READY event is already committed before any of this runs; nothing here
  can roll it back or hide it.
- Cost fields keep the recomputed values whatever the capture outcome.
- Failures never propagate to the caller that appended the status.
"""

from __future__ import annotations

import atexit
import json
from dataclasses import dataclass
from typing import Any

from flask import Flask, current_app, g

from ..extensions import db
from ..models import Order, OrderStatus, OrderStatusEvent
from ..signals import order_status_appended
from ..time_utils import to_utc_z, utcnow
from .bank_gateway import BankGateway, CaptureResult, Deadline, EpayGateway
from .concurrency import LeaseHeldError, lock_for_update, order_lease
from .cost_service import CostBreakdown, recalculate_order_cost
from . import order_status_service


OUTCOME_CAPTURED = "captured"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"
OUTCOME_IN_PROGRESS = "in_progress"

EXTENSION_KEY = "settlement"


@dataclass
class SettlementOutcome:
    order_id: int
    outcome: str
    reason: str | None = None
    breakdown: CostBreakdown | None = None
    capture: CaptureResult | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "outcome": self.outcome,
            "reason": self.reason,
            "cost": self.breakdown.to_dict() if self.breakdown else None,
            "capture": self.capture.raw if self.capture else None,
            "error": self.error,
        }


def _json_dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def merge_order_extra(order_id: int, patch: dict) -> dict:
    """Read-modify-write merge of top-level keys into Order.extra."""
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    extra = order.extra_dict()
    extra.update(patch)
    order.extra = _json_dumps(extra)
    db.session.commit()
    return extra


def _calculation_details(breakdown: CostBreakdown) -> dict:
    return {
        "items_cost": str(breakdown.subtotal),
        "delivery_price": str(breakdown.delivery_price),
        "service_fee": str(breakdown.service_fee),
        "bonus_used": str(breakdown.bonus_used),
        "final_amount": str(breakdown.final_amount),
        "lines": [line.to_dict() for line in breakdown.lines],
    }


@dataclass
class SettlementOrchestrator:
    gateway: BankGateway
    deadline_seconds: float = 25.0
    lease_seconds: int = 60

    def handle_status_appended(self, sender, event: OrderStatusEvent, **_):
        if event.status != OrderStatus.READY:
            return None
        try:
            return self.settle_order(event.order_id)
        except Exception:  # noqa: BLE001
            # READY is already committed; the status call must still succeed.
            db.session.rollback()
            current_app.logger.exception("Settlement crashed for order %s", event.order_id)
            return None

    def settle_order(self, order_id: int) -> SettlementOutcome:
        """
        Run cost recalculation and capture for one order.

        Never raises for downstream failures; the outcome says what happened.
        A failure taking the lease is recorded like a capture failure; a
        failure releasing it after an outcome was reached is only logged.
        """
        outcome = None
        try:
            with order_lease(order_id, ttl_seconds=self.lease_seconds):
                outcome = self._settle_locked(order_id)
        except LeaseHeldError:
            current_app.logger.warning("Settlement for order %s skipped: already in progress", order_id)
            outcome = SettlementOutcome(order_id, OUTCOME_IN_PROGRESS, reason="lease held")
        except Exception as exc:  # noqa: BLE001
            db.session.rollback()
            if outcome is not None:
                current_app.logger.exception("Releasing settlement lease failed for order %s", order_id)
            else:
                current_app.logger.exception("Settlement could not run for order %s", order_id)
                self._record_failure(order_id, None, exc)
                outcome = SettlementOutcome(order_id, OUTCOME_FAILED, error=str(exc))
        g.setdefault("settlement_outcomes", []).append(outcome)
        return outcome

    def _settle_locked(self, order_id: int) -> SettlementOutcome:
        breakdown = None
        try:
            breakdown = recalculate_order_cost(order_id)
            order = db.session.query(Order).filter_by(id=order_id).first()

            if not order.payment_id:
                current_app.logger.info("Order %s has no payment hold; capture skipped", order_id)
                return SettlementOutcome(order_id, OUTCOME_SKIPPED, reason="no payment hold", breakdown=breakdown)
            if breakdown.capture_amount <= 0:
                current_app.logger.info(
                    "Order %s final amount %s rounds to nothing; capture skipped", order_id, breakdown.final_amount
                )
                return SettlementOutcome(order_id, OUTCOME_SKIPPED, reason="nothing to capture", breakdown=breakdown)

            amount = breakdown.capture_amount
            result = self.gateway.capture(order.payment_id, amount, deadline=Deadline(self.deadline_seconds))

            merge_order_extra(order_id, {
                "confirmed_payment": {
                    "amount": amount,
                    "confirmed_at": to_utc_z(utcnow()),
                    "gateway_response": result.raw,
                    "calculation_details": _calculation_details(breakdown),
                }
            })
            current_app.logger.info("Order %s captured %s on operation %s", order_id, amount, order.payment_id)
            return SettlementOutcome(order_id, OUTCOME_CAPTURED, breakdown=breakdown, capture=result)

        except Exception as exc:  # noqa: BLE001
            db.session.rollback()
            current_app.logger.exception("Settlement failed for order %s", order_id)
            self._record_failure(order_id, breakdown, exc)
            return SettlementOutcome(order_id, OUTCOME_FAILED, breakdown=breakdown, error=str(exc))

    def _record_failure(self, order_id: int, breakdown: CostBreakdown | None, exc: Exception) -> None:
        amount = breakdown.capture_amount if breakdown else None
        try:
            merge_order_extra(order_id, {
                "settlement_failure": {
                    "amount": amount,
                    "failed_at": to_utc_z(utcnow()),
                    "error": str(exc),
                }
            })
        except Exception:  # noqa: BLE001
            db.session.rollback()
            current_app.logger.exception("Could not record settlement failure on order %s", order_id)
        order_status_service.append_status(order_id, OrderStatus.PAYMENT_FAILED)


def init_app(app: Flask, gateway: BankGateway | None = None) -> SettlementOrchestrator:
    """
    Build the orchestrator for this app and subscribe it to status events.

    The gateway is injected; when omitted an EpayGateway is built from config
    and its HTTP client is closed at interpreter exit.
    """
    if gateway is None:
        gateway = EpayGateway.from_config(app.config)
        atexit.register(gateway.close)

    orchestrator = SettlementOrchestrator(
        gateway=gateway,
        deadline_seconds=float(app.config["SETTLEMENT_DEADLINE_SECONDS"]),
        lease_seconds=int(app.config["SETTLEMENT_LEASE_SECONDS"]),
    )
    app.extensions[EXTENSION_KEY] = orchestrator
    order_status_appended.connect(orchestrator.handle_status_appended, sender=app, weak=False)
    return orchestrator


def get_orchestrator() -> SettlementOrchestrator:
    return current_app.extensions[EXTENSION_KEY]


def outcomes_for(order_id: int) -> list[SettlementOutcome]:
    """Settlement outcomes recorded for the order in the current app context."""
    return [o for o in g.get("settlement_outcomes", []) if o.order_id == order_id]
