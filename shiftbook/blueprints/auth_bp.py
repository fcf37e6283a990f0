"""
Session blueprint.

Endpoints:
    POST /api/v1/auth/login   online login, falls back to cached users offline
    POST /api/v1/auth/logout  clear the session
    GET  /api/v1/auth/me      current user
"""

from flask import Blueprint, jsonify, request

from shiftbook.context import get_context
from shiftbook.utils.errors import E, api_error, result_error

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return api_error(E.VALIDATION_REQUIRED, "username and password are required")

    ctx = get_context()
    result = ctx.session.login(username, password)
    if not result:
        return result_error(result, E.UNAUTHENTICATED)
    return jsonify({"user": result.record, "offline": ctx.session.is_offline_session}), 200


@auth_bp.route("/logout", methods=["POST"])
def logout():
    get_context().logout()
    return jsonify({"status": "ok"}), 200


@auth_bp.route("/me", methods=["GET"])
def me():
    ctx = get_context()
    user = ctx.session.current_user
    if user is None:
        return api_error(E.UNAUTHENTICATED, "Debe iniciar sesión.")
    return jsonify({"user": user, "offline": ctx.session.is_offline_session}), 200
