"""
Backup blueprint.

Endpoints:
    GET  /api/v1/backup/export  full database as {collection: [records]}
    POST /api/v1/backup/import  destructive replace from the same shape (Administrador only)
"""

import logging

from flask import Blueprint, g, jsonify, request

from shiftbook.context import get_context
from shiftbook.core.exceptions import ImportRejectedError, StorageError
from shiftbook.middleware.session_required import login_required, role_required
from shiftbook.models.auth import ROLE_ADMIN
from shiftbook.utils.errors import E, api_error

logger = logging.getLogger(__name__)

backup_bp = Blueprint("backup_bp", __name__, url_prefix="/api/v1/backup")


@backup_bp.route("/export", methods=["GET"])
@login_required
def export_backup():
    try:
        payload = get_context().backup.export_database(g.current_user.get("username"))
    except StorageError as exc:
        return api_error(E.STORAGE, "Error al exportar la base de datos.", details={"error": str(exc)})
    return jsonify(payload), 200


@backup_bp.route("/import", methods=["POST"])
@role_required(ROLE_ADMIN)
def import_backup():
    payload = request.get_json(silent=True)
    try:
        counts = get_context().backup.import_database(payload, g.current_user.get("username"))
    except ImportRejectedError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)
    except StorageError as exc:
        return api_error(E.STORAGE, "Error al importar la base de datos.", details={"error": str(exc)})
    return jsonify({"imported": counts}), 200
