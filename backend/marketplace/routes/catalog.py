# Overview: Flask API routes for catalog sync; JSON and file uploads of price/stock snapshots.

"""
Catalog Routes

Supports JSON bodies and CSV, JSON or Excel (.xlsx) uploads.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_business_auth
from ..services import catalog_sync_service
from ..validation import ValidationError


catalog_bp = Blueprint("business_catalog", __name__, url_prefix="/api/business/catalog")


@catalog_bp.post("/sync")
@require_business_auth
def sync_route():
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list):
        return jsonify({"error": "items must be a list"}), 400

    try:
        result = catalog_sync_service.sync_prices(g.business_id, items)
        return jsonify(result.to_dict())
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Catalog sync failed for business %s", g.business_id)
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/sync/upload")
@require_business_auth
def sync_upload_route():
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400

    file = request.files["file"]
    try:
        rows = catalog_sync_service.parse_upload(file.filename or "", file.stream)
        result = catalog_sync_service.sync_prices(g.business_id, rows)
        return jsonify(result.to_dict())
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to parse catalog upload %s", file.filename)
        return jsonify({"error": "Failed to parse upload"}), 400


@catalog_bp.post("/items")
@require_business_auth
def upsert_items_route():
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list):
        return jsonify({"error": "items must be a list"}), 400

    try:
        result = catalog_sync_service.sync_items(g.business_id, items)
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Catalog item upsert failed for business %s", g.business_id)
        return jsonify({"error": "Internal server error"}), 500
