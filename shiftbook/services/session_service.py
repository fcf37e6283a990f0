"""
Session Service: who is logged in on this device.

Login goes to the remote authority first. The returned JWT is only decoded
to read its claims (``userId``, ``username``, ``role``); the server is the
one that verifies it. When the server cannot be reached the credentials
are checked against the locally cached users instead (offline login): the
user can work, but there is no token and therefore no sync.

The token is kept in ``local_state`` so a restart can restore the session.
"""

import logging

import jwt

from shiftbook.core.exceptions import StorageError
from shiftbook.models.settings import STATE_SESSION_TOKEN
from shiftbook.repositories.base import OperationResult
from shiftbook.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

MSG_CREDENTIALS_REQUIRED = "Ingrese usuario y contraseña."
MSG_INVALID_CREDENTIALS = "Usuario o contraseña incorrectos."
MSG_BAD_TOKEN = "El servidor devolvió un token inválido."


def decode_token(token: str) -> dict:
    """Read the claims of a server-issued JWT without verifying its signature.

    Raises:
        jwt.InvalidTokenError: if the token is not a decodable JWT.
    """
    return jwt.decode(token, options={"verify_signature": False})


class SessionService:
    """Current user + session token, with load-from-storage and logout teardown."""

    def __init__(self, store, users, audit, gateway, clock=now_ms) -> None:
        self.store = store
        self.users = users
        self.audit = audit
        self.gateway = gateway
        self.clock = clock
        self._user: dict | None = None
        self._token: str | None = None

    # ── State ────────────────────────────────────────────────────────────

    @property
    def current_user(self) -> dict | None:
        return dict(self._user) if self._user else None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def is_offline_session(self) -> bool:
        return self._user is not None and self._token is None

    def _user_from_claims(self, claims: dict) -> dict:
        user = {
            "id": claims.get("userId"),
            "username": claims.get("username"),
            "role": claims.get("role"),
        }
        # The local copy knows the employee link; the token does not carry it
        local = self.users.find_by_username(user["username"]) if user["username"] else None
        if local and local.get("employeeId"):
            user["employeeId"] = local["employeeId"]
        return user

    def _is_expired(self, claims: dict) -> bool:
        exp = claims.get("exp")
        return isinstance(exp, (int, float)) and exp * 1000 <= self.clock()

    # ── Operations ───────────────────────────────────────────────────────

    def login(self, username: str, password: str) -> OperationResult:
        username = (username or "").strip()
        if not username or not password:
            return OperationResult.rejected(MSG_CREDENTIALS_REQUIRED)

        result = self.gateway.login(username, password)
        if result.ok:
            return self._online_login(username, result.data or {})

        if result.network_failure or (result.status_code or 0) >= 500:
            logger.warning("Sync server unreachable, trying offline login for %s", username,
                           extra={"actor": username})
            return self._offline_login(username, password)

        logger.info("Login rejected by server for %s: %s", username, result.error,
                    extra={"actor": username, "status": result.status_code})
        self.audit.add_log(username, "User Login Failed - Invalid Credentials", {"mode": "online"})
        return OperationResult.rejected(MSG_INVALID_CREDENTIALS)

    def _online_login(self, username: str, data: dict) -> OperationResult:
        token = data.get("token") if isinstance(data, dict) else None
        try:
            if not token:
                raise jwt.InvalidTokenError("missing token")
            claims = decode_token(token)
        except jwt.InvalidTokenError as exc:
            logger.error("Login response for %s carried an unusable token: %s", username, exc)
            return OperationResult.rejected(MSG_BAD_TOKEN)

        user = self._user_from_claims(claims)
        if not user["username"]:
            user["username"] = username
        try:
            self.store.set_state(STATE_SESSION_TOKEN, token)
        except StorageError as exc:
            logger.error("Could not persist session token: %s", exc)
            return OperationResult.failed()

        self._user, self._token = user, token
        self.audit.add_log(user["username"], "User Login Success", {"mode": "online", "role": user["role"]})
        return OperationResult.success(self.current_user)

    def _offline_login(self, username: str, password: str) -> OperationResult:
        user = self.users.verify_credentials(username, password)
        if user is None:
            self.audit.add_log(username, "User Login Failed - Invalid Credentials", {"mode": "offline"})
            return OperationResult.rejected(MSG_INVALID_CREDENTIALS)
        self._user, self._token = user, None
        self.audit.add_log(username, "User Login Success", {"mode": "offline", "role": user.get("role")})
        return OperationResult.success(self.current_user)

    def logout(self) -> None:
        """Forget the user and the persisted token."""
        if self._user is not None:
            self.audit.add_log(self._user.get("username"), "User Logout")
        self._user, self._token = None, None
        try:
            self.store.set_state(STATE_SESSION_TOKEN, None)
        except StorageError:
            logger.exception("Could not clear the persisted session token")

    def restore(self) -> dict | None:
        """Rebuild the session from the persisted token, if it is still usable."""
        token = self.store.get_state(STATE_SESSION_TOKEN)
        if not token:
            return None
        try:
            claims = decode_token(token)
        except jwt.InvalidTokenError:
            logger.warning("Discarding an undecodable persisted session token")
            self.store.set_state(STATE_SESSION_TOKEN, None)
            return None
        if self._is_expired(claims):
            logger.info("Persisted session token expired")
            self.store.set_state(STATE_SESSION_TOKEN, None)
            return None
        self._user, self._token = self._user_from_claims(claims), token
        logger.info("Session restored for %s", self._user.get("username"),
                    extra={"actor": self._user.get("username")})
        return self.current_user
