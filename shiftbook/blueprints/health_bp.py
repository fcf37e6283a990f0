"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        simple 200 for the UI shell
    GET /api/v1/health/live   local database + sync engine status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from shiftbook.context import get_context
from shiftbook.models import db
from shiftbook.services.schema_service import SCHEMA_VERSION

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "app": "Shiftbook"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1),
                              "schema_version": SCHEMA_VERSION}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Sync engine ──────────────────────────────────────────────────
    ctx = get_context()
    checks["sync"] = {
        "state": ctx.sync.state,
        "online": ctx.sync.is_online,
        "server": current_app.config.get("SYNC_SERVER_URL"),
    }

    status_code = 200 if overall else 503
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), status_code
