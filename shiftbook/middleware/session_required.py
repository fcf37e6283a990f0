"""
Session decorators for the local API.

Usage:
    @shifts_bp.route("/start", methods=["POST"])
    @login_required
    def start_shift():
        user = g.current_user
        ...

    @backup_bp.route("/import", methods=["POST"])
    @role_required(ROLE_ADMIN)
    def import_backup():
        ...
"""

import functools
import logging

from flask import g

from shiftbook.context import get_context
from shiftbook.utils.errors import E, api_error

logger = logging.getLogger(__name__)

MSG_LOGIN_REQUIRED = "Debe iniciar sesión."
MSG_FORBIDDEN = "No tiene permisos para esta acción."


def login_required(f):
    """Require a logged-in user; exposes it as ``g.current_user``."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user = get_context().session.current_user
        if user is None:
            return api_error(E.UNAUTHENTICATED, MSG_LOGIN_REQUIRED)
        g.current_user = user
        return f(*args, **kwargs)
    return decorated


def role_required(*roles: str):
    """Require a logged-in user holding one of ``roles``."""
    def decorator(f):
        @functools.wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            if g.current_user.get("role") not in roles:
                logger.warning("Permission denied: %s (role=%s) → %s",
                               g.current_user.get("username"), g.current_user.get("role"), f.__name__,
                               extra={"actor": g.current_user.get("username")})
                return api_error(E.FORBIDDEN, MSG_FORBIDDEN)
            return f(*args, **kwargs)
        return decorated
    return decorator
