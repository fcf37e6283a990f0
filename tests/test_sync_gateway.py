"""Tests for shiftbook.integrations.sync_gateway.

Coverage
--------
    1. successful POST returns parsed JSON and a payload hash
    2. Bearer token and JSON headers are sent
    3. 4xx is returned without retrying
    4. 5xx and network errors are retried with backoff
    5. an unreachable server is reported as a network failure
    6. a non-JSON 2xx body is a failure
"""

from unittest.mock import patch

import pytest
import requests

from shiftbook.integrations.sync_gateway import BOOTSTRAP_PATH, SYNC_PATH, SyncGateway

from conftest import make_response


def _make_gateway(server, max_retries=2):
    return SyncGateway("http://sync.test/", session=server.session, timeout=5, max_retries=max_retries)


@pytest.fixture()
def no_sleep():
    with patch("shiftbook.integrations.sync_gateway.time.sleep") as sleep:
        yield sleep


class TestSuccess:
    def test_push_returns_parsed_body(self, server):
        server.reply(200, {"newSyncTimestamp": 5, "updates": {}})
        result = _make_gateway(server).push_changes("tok", {"changes": {}})
        assert result.ok
        assert result.data == {"newSyncTimestamp": 5, "updates": {}}
        assert len(result.payload_hash) == 64
        assert not result.network_failure

    def test_headers_and_url(self, server):
        _make_gateway(server).push_changes("tok", {"changes": {}})
        method, url, kwargs = server.last_call()
        assert (method, url) == ("POST", "http://sync.test" + SYNC_PATH)
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["json"] == {"changes": {}}
        assert kwargs["timeout"] == 5

    def test_bootstrap_is_get_without_body(self, server):
        _make_gateway(server).fetch_bootstrap("tok")
        method, url, kwargs = server.last_call()
        assert (method, url) == ("GET", "http://sync.test" + BOOTSTRAP_PATH)
        assert "json" not in kwargs

    def test_login_sends_no_token(self, server):
        _make_gateway(server).login("ana", "pw")
        _, _, kwargs = server.last_call()
        assert "Authorization" not in kwargs["headers"]
        assert kwargs["json"] == {"username": "ana", "password": "pw"}

    def test_empty_body_is_empty_dict(self, server):
        server.reply(204, None)
        result = _make_gateway(server).push_changes("tok", {})
        assert result.ok
        assert result.data == {}


class TestFailures:
    def test_4xx_is_not_retried(self, server, no_sleep):
        server.reply(401, {"message": "bad token"})
        result = _make_gateway(server).push_changes("tok", {})
        assert not result.ok
        assert result.status_code == 401
        assert "HTTP 401" in result.error
        assert len(server.calls) == 1
        no_sleep.assert_not_called()

    def test_5xx_is_retried_with_backoff(self, server, no_sleep):
        server.replies((503, None), (502, None), (200, {"ok": True}))
        result = _make_gateway(server).push_changes("tok", {})
        assert result.ok
        assert len(server.calls) == 3
        assert [c.args[0] for c in no_sleep.call_args_list] == [1, 4]

    def test_5xx_exhausts_retries(self, server, no_sleep):
        server.reply(500, {"error": "down"})
        result = _make_gateway(server).push_changes("tok", {})
        assert not result.ok
        assert result.status_code == 500
        assert not result.network_failure
        assert len(server.calls) == 3

    def test_connection_error_is_network_failure(self, server, no_sleep):
        server.fail()
        result = _make_gateway(server, max_retries=0).push_changes("tok", {})
        assert result.network_failure
        assert result.status_code is None
        assert "connection refused" in result.error

    def test_timeout_is_network_failure(self, server, no_sleep):
        server.fail(requests.Timeout("slow"))
        result = _make_gateway(server, max_retries=1).push_changes("tok", {})
        assert result.network_failure
        assert "timed out" in result.error
        assert len(server.calls) == 2

    def test_invalid_json_body(self, server):
        resp = make_response(200)
        resp._content = b"<html>proxy error</html>"
        server.session.request.return_value = resp
        result = _make_gateway(server).push_changes("tok", {})
        assert not result.ok
        assert result.status_code == 200
        assert result.error == "Respuesta del servidor no es JSON válido"
