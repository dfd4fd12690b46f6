# Overview: Flask API routes for merchant order operations; status ledger, stats and cost recalculation.

"""
Business Order Routes

DESIGN:
- PATCH status appends one ledger event; settlement side effects run inside
  the same request (subscribed to the status signal) and are reflected in
  the returned current status, e.g. 6 when the capture failed.
- Every route is scoped to the authenticated business (g.business_id).
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_business_auth
from ..models import OrderStatus, status_name
from ..services import cost_service, order_status_service
from ..services.settlement_service import outcomes_for
from ..validation import NotFoundError, ValidationError


orders_bp = Blueprint("business_orders", __name__, url_prefix="/api/business/orders")


@orders_bp.patch("/<int:order_id>/status")
@require_business_auth
def update_status_route(order_id: int):
    """
    Request body:
    {
        "status": 2
    }

    Returns:
        200: appended event plus the current status after side effects
        400: status missing or unknown
        404: order not found for this business
    """
    data = request.get_json(silent=True) or {}
    if "status" not in data:
        return jsonify({"error": "status is required"}), 400

    try:
        event = order_status_service.append_status(order_id, data["status"], business_id=g.business_id)
        current = order_status_service.get_current_status(order_id)

        body = {
            "event": event.to_dict(),
            "current_status": current.to_dict() if current else None,
        }
        if event.status == OrderStatus.READY:
            outcomes = outcomes_for(order_id)
            body["settlement"] = outcomes[-1].to_dict() if outcomes else None
        return jsonify(body), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/status")
@require_business_auth
def get_status_route(order_id: int):
    try:
        order_status_service.get_order(order_id, g.business_id)
        current = order_status_service.get_current_status(order_id)
        history = order_status_service.get_status_history(order_id)
        return jsonify({
            "order_id": order_id,
            "current_status": current.to_dict() if current else None,
            "history": [ev.to_dict() for ev in history],
        })
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@orders_bp.get("/stats")
@require_business_auth
def stats_route():
    counts = order_status_service.count_orders_by_current_status(g.business_id)
    return jsonify({
        "business_id": g.business_id,
        "by_status": [
            {"status": code, "status_name": status_name(code), "count": count}
            for code, count in sorted(counts.items())
        ],
        "total": sum(counts.values()),
    })


@orders_bp.post("/<int:order_id>/recalculate")
@require_business_auth
def recalculate_route(order_id: int):
    try:
        order_status_service.get_order(order_id, g.business_id)
        breakdown = cost_service.recalculate_order_cost(order_id)
        return jsonify({"cost": breakdown.to_dict()})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to recalculate order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
