"""
Sync blueprint.

Endpoints:
    GET  /api/v1/sync/status     engine state, watermark, pending count, notices
    POST /api/v1/sync/run        push pending changes and apply the response
    POST /api/v1/sync/bootstrap  replace local data with the server's dataset
    POST /api/v1/sync/network    {"online": bool} connectivity change
    GET  /api/v1/sync/errors     records the server rejected
"""

from flask import Blueprint, jsonify, request

from shiftbook.context import get_context
from shiftbook.middleware.session_required import login_required
from shiftbook.services.sync_service import STATE_ERROR
from shiftbook.utils.errors import E, api_error

sync_bp = Blueprint("sync_bp", __name__, url_prefix="/api/v1/sync")


def _report_response(report):
    body = report.to_dict()
    body["notices"] = get_context().sync.drain_notices()
    if report.skipped:
        return jsonify(body), 409
    if report.state == STATE_ERROR and not report.outcomes:
        # Nothing was applied: transport failure, malformed response or rollback
        return jsonify(body), 502
    return jsonify(body), 200


@sync_bp.route("/status", methods=["GET"])
@login_required
def status():
    sync = get_context().sync
    return jsonify({
        "state": sync.state,
        "online": sync.is_online,
        "lastSyncTimestamp": sync.last_sync_timestamp,
        "pending": sync.pending_count(),
        "notices": sync.notices,
    }), 200


@sync_bp.route("/run", methods=["POST"])
@login_required
def run():
    return _report_response(get_context().sync.run_sync())


@sync_bp.route("/bootstrap", methods=["POST"])
@login_required
def bootstrap():
    return _report_response(get_context().sync.bootstrap())


@sync_bp.route("/network", methods=["POST"])
@login_required
def network():
    data = request.get_json(silent=True) or {}
    online = data.get("online")
    if not isinstance(online, bool):
        return api_error(E.VALIDATION_INVALID, "online must be a boolean")
    sync = get_context().sync
    report = sync.set_network(online)
    return jsonify({
        "state": sync.state,
        "online": sync.is_online,
        "report": report.to_dict() if report else None,
        "notices": sync.drain_notices(),
    }), 200


@sync_bp.route("/errors", methods=["GET"])
@login_required
def errors():
    items = get_context().sync.errored_records()
    return jsonify({"items": items, "total": len(items)}), 200
