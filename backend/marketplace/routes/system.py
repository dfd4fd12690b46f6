# Overview: Flask API routes for system health.

"""
System health endpoint.

Checks database connectivity and reports the bank gateway wiring so
deployments can tell a missing BANK_* configuration apart from a dead DB.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Business
from ..services.settlement_service import EXTENSION_KEY
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        business_count = db.session.query(Business).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"businesses": business_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_settlement_health() -> dict:
    orchestrator = current_app.extensions.get(EXTENSION_KEY)
    if orchestrator is None:
        return {"status": "unhealthy", "error": "Settlement orchestrator not configured"}

    missing = [
        key for key in ("BANK_CLIENT_ID", "BANK_CLIENT_SECRET", "BANK_TERMINAL_AUTH")
        if not current_app.config.get(key)
    ]
    details = {"gateway": type(orchestrator.gateway).__name__}
    if missing:
        return {"status": "degraded", "warning": f"Missing config: {', '.join(missing)}", "details": details}
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    settlement_health = check_settlement_health()

    all_checks = [database_health, settlement_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "settlement": settlement_health,
        },
    }, http_status
