"""
Remote authority gateway.

All outbound HTTP calls to the sync server go through this class.
Direct `requests` calls in services or blueprints are FORBIDDEN.

  - Bearer token injected per call (the session service owns the token)
  - Retry: network errors and 5xx only, exponential backoff (1 s → 4 s)
  - 4xx responses are returned immediately; they will not improve on retry
  - Timeout: configurable per gateway (SYNC_TIMEOUT_SECONDS)
  - Always returns a GatewayResult, never raises

Testability: pass a mock `session` to SyncGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any

import requests

logger = logging.getLogger(__name__)

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]    # sleep[0] after 1st fail, sleep[1] after 2nd

# ── Default request timeout ────────────────────────────────────────────────
_DEFAULT_TIMEOUT = 30

LOGIN_PATH = "/api/login"
SYNC_PATH = "/api/sync"
BOOTSTRAP_PATH = "/api/bootstrap"


class GatewayResult:
    """Structured return value from SyncGateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body (dict or list), else None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
        payload_hash:   SHA-256 of the serialised request payload (hex).
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
        payload_hash: str | None = None,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.payload_hash = payload_hash

    @property
    def network_failure(self) -> bool:
        """True when the server was never reached (no HTTP status)."""
        return not self.ok and self.status_code is None

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} error={self.error!r}>"


class SyncGateway:
    """Sync server REST gateway.

    Usage:
        gateway = SyncGateway("https://sync.example.org")
        result = gateway.push_changes(token, payload)
        if result.ok: ...
    """

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
        max_retries: int = _RETRY_MAX,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    @classmethod
    def from_config(cls, config: dict, session: requests.Session | None = None) -> "SyncGateway":
        return cls(
            config["SYNC_SERVER_URL"],
            session=session,
            timeout=config.get("SYNC_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT),
            max_retries=config.get("SYNC_MAX_RETRIES", _RETRY_MAX),
        )

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Core request dispatcher ───────────────────────────────────────────────

    def _compute_payload_hash(self, payload: dict | list | None) -> str | None:
        if payload is None:
            return None
        raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    def request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        json_body: dict | list | None = None,
    ) -> GatewayResult:
        """Execute a request against the sync server with retries.

        Returns:
            GatewayResult: always returns (never raises). Callers check .ok.
        """
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        if json_body is not None:
            headers["Content-Type"] = "application/json"
        if token:
            headers["Authorization"] = f"Bearer {token}"

        payload_hash = self._compute_payload_hash(json_body)
        last_error: str = "Unknown error"
        last_status: int | None = None
        duration_ms = 0

        for attempt in range(self.max_retries + 1):
            kwargs: dict[str, Any] = {"headers": headers, "timeout": self.timeout}
            if json_body is not None:
                kwargs["json"] = json_body
            try:
                t0 = time.perf_counter()
                resp = self.session.request(method, url, **kwargs)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if resp.ok:
                    try:
                        data = resp.json() if resp.content else {}
                    except ValueError:
                        return GatewayResult(
                            ok=False, status_code=resp.status_code, data=None,
                            error="Respuesta del servidor no es JSON válido",
                            duration_ms=duration_ms, payload_hash=payload_hash,
                        )
                    logger.debug("%s %s → %d", method, path, resp.status_code,
                                 extra={"method": method, "path": path,
                                        "status": resp.status_code, "duration_ms": duration_ms})
                    return GatewayResult(
                        ok=True,
                        status_code=resp.status_code,
                        data=data,
                        error=None,
                        duration_ms=duration_ms,
                        payload_hash=payload_hash,
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                logger.warning(
                    "Sync server request failed attempt=%d/%d status=%d path=%s",
                    attempt + 1, self.max_retries + 1, resp.status_code, path,
                )
                if resp.status_code < 500:
                    break

            except requests.Timeout:
                last_status = None
                duration_ms = int(self.timeout * 1000)
                last_error = f"Request timed out after {self.timeout}s"
                logger.warning(
                    "Sync server request timed out attempt=%d/%d path=%s",
                    attempt + 1, self.max_retries + 1, path,
                )

            except requests.RequestException as exc:
                last_status = None
                last_error = str(exc)[:500]
                logger.warning(
                    "Sync server network error attempt=%d/%d path=%s error=%s",
                    attempt + 1, self.max_retries + 1, path, last_error,
                )

            if attempt < self.max_retries:
                sleep_s = _RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)]
                logger.info("Retrying sync server request in %ss (attempt %d)", sleep_s, attempt + 2)
                time.sleep(sleep_s)

        return GatewayResult(
            ok=False,
            status_code=last_status,
            data=None,
            error=last_error,
            duration_ms=duration_ms,
            payload_hash=payload_hash,
        )

    # ── Remote authority operations ───────────────────────────────────────────

    def login(self, username: str, password: str) -> GatewayResult:
        """POST /api/login → ``{token}``."""
        return self.request("POST", LOGIN_PATH, json_body={"username": username, "password": password})

    def push_changes(self, token: str, payload: dict) -> GatewayResult:
        """POST /api/sync.

        Payload: ``{lastSyncTimestamp, changes: {collection: [record]}, auditLogs: [entry]}``.

        Returns:
            GatewayResult.data = {
              "updates": {collection: [record]},
              "errors": [{clientRecordId, message}],
              "conflicts": [{clientRecordId?, message}],
              "newSyncTimestamp": int,
            }
        """
        return self.request("POST", SYNC_PATH, token=token, json_body=payload)

    def fetch_bootstrap(self, token: str) -> GatewayResult:
        """GET /api/bootstrap → ``{data: {collection: [record]}, newSyncTimestamp}``."""
        return self.request("GET", BOOTSTRAP_PATH, token=token)
