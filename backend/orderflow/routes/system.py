# Overview: Liveness/readiness probe and build information.

import sys
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..services.carrier_service import carrier_enabled, get_carrier_client
from ..services.payment_gateway import get_payment_gateway
from ..time_utils import utcnow, to_utc_z


system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def _timed(check) -> dict:
    started = time.perf_counter()
    result = check()
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


def _database_check() -> dict:
    try:
        db.session.execute(text("SELECT 1"))
        pending_orders = db.session.execute(
            text("SELECT COUNT(*) FROM orders WHERE status = 'PENDING'")
        ).scalar_one()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Health check: database unreachable")
        return {"status": "unhealthy", "error": "Database error"}
    return {"status": "healthy", "details": {"pending_orders": pending_orders}}


def _collaborator_check() -> dict:
    gateway = get_payment_gateway()
    details = {
        "payment_gateway": gateway.name,
        "carrier": get_carrier_client().name if carrier_enabled() else "disabled",
    }
    if gateway.name == "disabled":
        # refunds only
        return {"status": "degraded", "warning": "Refunds unavailable: payment gateway disabled", "details": details}
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """
    200 with status "healthy" or "degraded"; 503 when the database check fails.
    """
    checks = {
        "database": _timed(_database_check),
        "collaborators": _timed(_collaborator_check),
    }
    statuses = {c["status"] for c in checks.values()}
    if "unhealthy" in statuses:
        overall, code = "unhealthy", 503
    elif "degraded" in statuses:
        overall, code = "degraded", 200
    else:
        overall, code = "healthy", 200

    return jsonify({"status": overall, "timestamp": to_utc_z(utcnow()), "checks": checks}), code


@system_bp.get("/version")
def version():
    return jsonify({
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    })
