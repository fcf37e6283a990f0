"""
Shared pytest fixtures for the Shiftbook test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite)
    - clock: FrozenClock driving every service (function-scoped)
    - server: FakeServer wrapping a mocked requests.Session
    - session: Per-test DB reset + fresh ClientContext (autouse)
    - ctx: the ClientContext of the current test
    - client: Flask test client
    - admin / admin_online: an Administrador user, optionally logged in with a token
    - fail_writes: make Durable Store puts and deletes on one collection raise StorageError
"""

import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import jwt
import pytest
import requests

from shiftbook import create_app
from shiftbook.context import get_context, init_client_context
from shiftbook.core.exceptions import StorageError
from shiftbook.models import db as _db
from shiftbook.models.auth import ROLE_ADMIN
from shiftbook.services.schema_service import migrate_schema
from shiftbook.utils.timeutils import MINUTE_MS, to_ms

# Tuesday 2024-05-21 08:00 local time
START = datetime(2024, 5, 21, 8, 0)

TOKEN_KEY = "shiftbook-test-signing-key-0123456789abcdef"


class FrozenClock:
    """Epoch-milliseconds clock that only moves when told to."""

    def __init__(self, moment: datetime = START) -> None:
        self.ms = to_ms(moment)

    def __call__(self) -> int:
        return self.ms

    def set(self, moment: datetime) -> None:
        self.ms = to_ms(moment)

    def advance(self, ms: int = 0, *, minutes: int = 0, days: int = 0) -> None:
        self.ms += ms + minutes * MINUTE_MS + days * 24 * 60 * MINUTE_MS


def make_response(status: int = 200, body=None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.encoding = "utf-8"
    resp._content = json.dumps(body).encode("utf-8") if body is not None else b""
    resp.headers["Content-Type"] = "application/json"
    return resp


def make_token(username="admin", role=ROLE_ADMIN, user_id="u-admin", **claims) -> str:
    return jwt.encode({"userId": user_id, "username": username, "role": role, **claims},
                      TOKEN_KEY, algorithm="HS256")


class FakeServer:
    """Scripted replies for the sync server behind a mocked requests.Session."""

    def __init__(self) -> None:
        self.session = MagicMock(spec=requests.Session)
        self.session.request.return_value = make_response(200, {})

    def reply(self, status: int = 200, body=None) -> None:
        self.session.request.side_effect = None
        self.session.request.return_value = make_response(status, body)

    def replies(self, *pairs) -> None:
        self.session.request.side_effect = [make_response(s, b) for s, b in pairs]

    def fail(self, exc: Exception | None = None) -> None:
        self.session.request.side_effect = exc or requests.ConnectionError("connection refused")

    @property
    def calls(self):
        return self.session.request.call_args_list

    def last_call(self):
        args, kwargs = self.session.request.call_args
        return args[0], args[1], kwargs


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
def server():
    return FakeServer()


@pytest.fixture(autouse=True)
def session(app, clock, server):
    """Per-test: app context, fresh client context, recreate tables afterwards."""
    with app.app_context():
        init_client_context(app, clock=clock, http_session=server.session)
        yield
        _db.session.rollback()
        _db.drop_all()
        migrate_schema()


@pytest.fixture()
def ctx():
    return get_context()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def admin(ctx):
    """A stored Administrador account (not logged in)."""
    result = ctx.users.add_user(
        {"username": "admin", "password": "secret", "role": ROLE_ADMIN}, actor="Sistema",
    )
    assert result.ok
    return result.record


@pytest.fixture()
def admin_online(ctx, admin, server):
    """``admin`` logged in against the (fake) server, holding a token."""
    server.reply(200, {"token": make_token(user_id=admin["id"])})
    result = ctx.session.login("admin", "secret")
    assert result.ok
    server.reply(200, {})
    return ctx.session.current_user


@pytest.fixture()
def fail_writes(ctx):
    """Return a factory of patches that make ``store.put`` and ``store.delete``
    fail for one collection.

    Usage:
        with fail_writes("shiftReports"):
            result = ctx.logbook.start_shift(user)
    """
    real_put = ctx.store.put
    real_delete = ctx.store.delete

    def _factory(collection):
        def _put(name, record):
            if name == collection:
                raise StorageError("put", collection=name)
            return real_put(name, record)

        def _delete(name, record_id):
            if name == collection:
                raise StorageError("delete", collection=name)
            return real_delete(name, record_id)

        return patch.multiple(
            ctx.store,
            put=MagicMock(side_effect=_put),
            delete=MagicMock(side_effect=_delete),
        )

    return _factory
