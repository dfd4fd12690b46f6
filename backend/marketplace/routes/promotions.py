from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from ..decorators import require_business_auth
from ..services import promotions_service
from ..validation import NotFoundError, ValidationError

promotions_bp = Blueprint("business_promotions", __name__, url_prefix="/api/business/promotions")


@promotions_bp.route("/auto", methods=["POST"])
@require_business_auth
def create_promotion_auto():
    data = request.get_json(silent=True) or {}
    try:
        promotion = promotions_service.create_promotion(g.business_id, data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"promotion": promotion.to_dict(include_details=True)}), 201


@promotions_bp.route("/active", methods=["GET"])
@require_business_auth
def get_active_promotions():
    result = promotions_service.list_active_promotions(g.business_id)
    return jsonify([p.to_dict(include_details=True) for p in result])
