"""
Shift logbook blueprint.

Endpoints:
    GET    /api/v1/shifts/active                          the open shift (or null)
    POST   /api/v1/shifts/start                           open a new shift
    POST   /api/v1/shifts/close                           close the open shift
    GET    /api/v1/shifts/closed?date=YYYY-MM-DD          closed reports
    GET    /api/v1/shifts/<report_id>                     one report
    POST   /api/v1/shifts/active/entries                  add log entry
    PUT    /api/v1/shifts/active/entries/<entry_id>       edit log entry
    DELETE /api/v1/shifts/active/entries/<entry_id>       delete log entry
    POST   /api/v1/shifts/active/suppliers                add supplier visit
    PUT    /api/v1/shifts/active/suppliers/<entry_id>     edit supplier visit
    DELETE /api/v1/shifts/active/suppliers/<entry_id>     delete supplier visit
"""

from flask import Blueprint, g, jsonify, request

from shiftbook.context import get_context
from shiftbook.middleware.session_required import login_required
from shiftbook.utils.errors import E, api_error, result_error
from shiftbook.utils.timeutils import parse_local_minute

shifts_bp = Blueprint("shifts_bp", __name__, url_prefix="/api/v1/shifts")


def _entry_time(data: dict):
    """Optional ``at`` field in ``YYYY-MM-DDTHH:MM`` local time. Returns (datetime|None, error_response|None)."""
    raw = data.get("at")
    if not raw:
        return None, None
    try:
        return parse_local_minute(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "at must be YYYY-MM-DDTHH:MM")


# ── Lifecycle ────────────────────────────────────────────────────────────────

@shifts_bp.route("/active", methods=["GET"])
@login_required
def active_shift():
    return jsonify({"shift": get_context().reports.open_shift()}), 200


@shifts_bp.route("/start", methods=["POST"])
@login_required
def start_shift():
    data = request.get_json(silent=True) or {}
    result = get_context().logbook.start_shift(g.current_user, data.get("shiftName"))
    if not result:
        return result_error(result, E.CONFLICT_STATE)
    return jsonify({"shift": result.record}), 201


@shifts_bp.route("/close", methods=["POST"])
@login_required
def close_shift():
    result = get_context().logbook.close_shift(g.current_user)
    if not result:
        return result_error(result, E.CONFLICT_STATE)
    return jsonify({"shift": result.record}), 200


@shifts_bp.route("/closed", methods=["GET"])
@login_required
def closed_shifts():
    reports = get_context().reports.closed_reports(request.args.get("date") or None)
    return jsonify({"items": reports, "total": len(reports)}), 200


@shifts_bp.route("/<report_id>", methods=["GET"])
@login_required
def get_shift(report_id):
    report = get_context().reports.get_report(report_id)
    if report is None:
        return api_error(E.NOT_FOUND, "Reporte de turno no encontrado.")
    return jsonify({"shift": report}), 200


# ── Log entries ──────────────────────────────────────────────────────────────

@shifts_bp.route("/active/entries", methods=["POST"])
@login_required
def add_log_entry():
    data = request.get_json(silent=True) or {}
    if not (data.get("annotation") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "annotation is required")
    at, error = _entry_time(data)
    if error:
        return error
    result = get_context().logbook.add_log_entry(data["annotation"], g.current_user, at=at)
    if not result:
        return result_error(result)
    return jsonify({"shift": result.record}), 201


@shifts_bp.route("/active/entries/<entry_id>", methods=["PUT"])
@login_required
def edit_log_entry(entry_id):
    data = request.get_json(silent=True) or {}
    result = get_context().logbook.edit_log_entry(entry_id, data.get("annotation"), g.current_user)
    if not result:
        return result_error(result)
    return jsonify({"shift": result.record}), 200


@shifts_bp.route("/active/entries/<entry_id>", methods=["DELETE"])
@login_required
def delete_log_entry(entry_id):
    result = get_context().logbook.delete_log_entry(entry_id, g.current_user)
    if not result:
        return result_error(result)
    return jsonify({"shift": result.record}), 200


# ── Supplier visits ──────────────────────────────────────────────────────────

@shifts_bp.route("/active/suppliers", methods=["POST"])
@login_required
def add_supplier_entry():
    data = request.get_json(silent=True) or {}
    at, error = _entry_time(data)
    if error:
        return error
    result = get_context().logbook.add_supplier_entry(data, g.current_user, at=at)
    if not result:
        return result_error(result)
    return jsonify({"shift": result.record}), 201


@shifts_bp.route("/active/suppliers/<entry_id>", methods=["PUT"])
@login_required
def edit_supplier_entry(entry_id):
    data = request.get_json(silent=True) or {}
    result = get_context().logbook.edit_supplier_entry(entry_id, data, g.current_user)
    if not result:
        return result_error(result)
    return jsonify({"shift": result.record}), 200


@shifts_bp.route("/active/suppliers/<entry_id>", methods=["DELETE"])
@login_required
def delete_supplier_entry(entry_id):
    result = get_context().logbook.delete_supplier_entry(entry_id, g.current_user)
    if not result:
        return result_error(result)
    return jsonify({"shift": result.record}), 200
