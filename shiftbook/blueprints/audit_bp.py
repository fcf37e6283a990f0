"""
Audit log blueprint.

Endpoints:
    GET    /api/v1/audit?q=term   entries newest first, optionally filtered
    DELETE /api/v1/audit          clear the journal (Administrador only)
"""

from flask import Blueprint, g, jsonify, request

from shiftbook.context import get_context
from shiftbook.core.exceptions import StorageError
from shiftbook.middleware.session_required import login_required, role_required
from shiftbook.models.auth import ROLE_ADMIN
from shiftbook.utils.errors import E, api_error

audit_bp = Blueprint("audit_bp", __name__, url_prefix="/api/v1/audit")


@audit_bp.route("", methods=["GET"])
@login_required
def search_audit_logs():
    """
    Query params:
        q       : case-insensitive term over actor, action and details
        limit   : max entries returned (default 200, max 1000)
    """
    limit = min(1000, max(1, request.args.get("limit", 200, type=int)))
    entries = get_context().audit.search(request.args.get("q"))
    return jsonify({"items": entries[:limit], "total": len(entries)}), 200


@audit_bp.route("", methods=["DELETE"])
@role_required(ROLE_ADMIN)
def clear_audit_logs():
    audit = get_context().audit
    try:
        audit.clear_all_logs()
    except StorageError as exc:
        audit.add_log(g.current_user.get("username"), "Clear Audit Logs Failed", {"error": str(exc)})
        return api_error(E.STORAGE, "No se pudo limpiar el registro de auditoría.")
    return jsonify({"status": "cleared"}), 200
