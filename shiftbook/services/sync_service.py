"""
Sync Engine: optimistic push/pull reconciliation with the remote authority.

State machine
─────────────
    idle ──(network lost)──────────▶ no-network ──(restored)──▶ idle + auto sync
    idle/success/error ──(run)─────▶ syncing
    syncing ──(nothing pending)────▶ success ──(3 s)──▶ idle
    syncing ──(all accepted)───────▶ success ──(3 s)──▶ idle
    syncing ──(≥1 item error)──────▶ error   (sticky)
    syncing ──(transport failure)──▶ error   ──(5 s)──▶ idle

The timed transitions are evaluated lazily against the injected clock
whenever ``state`` is read. A run requested while ``syncing`` is refused
with a notice, never queued.

Apply step
──────────
The server response is validated first, then applied in ONE store
transaction together with the new watermark:

    1. sent records not reported as errors → ``synced`` (``syncError`` cleared)
    2. server updates merged over the local copy → ``synced``, each in its
       own savepoint; one that cannot be stored (a username already held
       locally, say) is skipped and its local copy, if any, flagged ``error``
    3. reported errors → ``error`` + message, looked up across collections
    4. conflicts → notices only
    5. watermark ← ``newSyncTimestamp``, unless an update was skipped

Record notices are raised after the commit. A transport failure or a
malformed response leaves every collection and the watermark untouched.
"""

import copy
import logging

from shiftbook.core.exceptions import StorageError
from shiftbook.models.base import SYNC_ERROR, SYNC_PENDING, SYNC_SYNCED
from shiftbook.models.registry import AUDIT_COLLECTION, SYNCABLE_COLLECTIONS, resolve_collection
from shiftbook.models.settings import STATE_LAST_SYNC
from shiftbook.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

# ── States ───────────────────────────────────────────────────────────────
STATE_IDLE = "idle"
STATE_SYNCING = "syncing"
STATE_SUCCESS = "success"
STATE_ERROR = "error"
STATE_NO_NETWORK = "no-network"

SUCCESS_IDLE_MS = 3000
ERROR_IDLE_MS = 5000

# ── Per-record outcomes ──────────────────────────────────────────────────
OUTCOME_ACCEPTED = "accepted"
OUTCOME_REJECTED = "rejected"
OUTCOME_SUPERSEDED = "superseded"

# ── Notices ──────────────────────────────────────────────────────────────
MSG_ALREADY_SYNCING = "La sincronización ya está en progreso."
MSG_OFFLINE = "No se puede sincronizar. No hay conexión a internet."
MSG_LOGIN_REQUIRED = "Debe iniciar sesión en línea para sincronizar."
MSG_UP_TO_DATE = "Los datos ya están actualizados."
MSG_COMPLETED = "Sincronización completada."
MSG_COMPLETED_WITH_ERRORS = "Sincronización completada con errores."
MSG_TRANSPORT_FAILED = "No se pudo contactar al servidor de sincronización."
MSG_MALFORMED = "El servidor devolvió una respuesta inválida."
MSG_APPLY_FAILED = "No se pudieron guardar los datos sincronizados."
MSG_NETWORK_LOST = "Se ha perdido la conexión a internet. Modo offline activado."
MSG_NETWORK_RESTORED = "Conexión a internet reestablecida. Iniciando sincronización."
MSG_RECORD_ERROR = "Error al sincronizar {label}: {message}"
MSG_BOOTSTRAP_DONE = "Datos iniciales descargados del servidor."
MSG_UPDATE_NOT_APPLIED = "No se pudo aplicar el cambio del servidor para {label}: {message}"
MSG_UPDATE_CONFLICT = "Conflicto con un registro local (dato único repetido)."

PUSHED_COLLECTIONS = SYNCABLE_COLLECTIONS + (AUDIT_COLLECTION,)


class MalformedResponseError(ValueError):
    """The server answered 2xx with a body that does not fit the contract."""


class RecordOutcome:
    """What happened to one pushed record."""

    def __init__(self, collection: str, record_id: str, outcome: str, reason: str | None = None) -> None:
        self.collection = collection
        self.record_id = record_id
        self.outcome = outcome
        self.reason = reason

    def to_dict(self) -> dict:
        data = {"collection": self.collection, "recordId": self.record_id, "outcome": self.outcome}
        if self.reason:
            data["reason"] = self.reason
        return data

    def __repr__(self):
        return f"<RecordOutcome {self.collection}/{self.record_id} {self.outcome}>"


class SyncReport:
    """Result of one ``run_sync`` / ``bootstrap`` call.

    Attributes:
        state:      Engine state right after the call.
        message:    Notice text describing the run.
        skipped:    True when the run was refused before contacting the server.
        outcomes:   One RecordOutcome per pushed record.
        applied:    Number of server records written locally.
        conflicts:  Raw conflict entries from the server.
        unapplied:  Server updates that could not be stored (watermark held back).
        new_sync_timestamp: Watermark stored by this run, if any.
    """

    def __init__(self, state: str, message: str | None = None, *, skipped: bool = False) -> None:
        self.state = state
        self.message = message
        self.skipped = skipped
        self.outcomes: list[RecordOutcome] = []
        self.applied = 0
        self.conflicts: list[dict] = []
        self.unapplied: list[RecordOutcome] = []
        self.new_sync_timestamp: int | None = None

    def _by(self, outcome: str) -> list[RecordOutcome]:
        return [o for o in self.outcomes if o.outcome == outcome]

    @property
    def accepted(self) -> list[RecordOutcome]:
        return self._by(OUTCOME_ACCEPTED)

    @property
    def rejected(self) -> list[RecordOutcome]:
        return self._by(OUTCOME_REJECTED)

    @property
    def superseded(self) -> list[RecordOutcome]:
        return self._by(OUTCOME_SUPERSEDED)

    @property
    def ok(self) -> bool:
        return self.state == STATE_SUCCESS

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "message": self.message,
            "skipped": self.skipped,
            "sent": len(self.outcomes),
            "accepted": len(self.accepted),
            "rejected": len(self.rejected),
            "superseded": len(self.superseded),
            "applied": self.applied,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "conflicts": self.conflicts,
            "unapplied": [o.to_dict() for o in self.unapplied],
            "newSyncTimestamp": self.new_sync_timestamp,
        }

    def __repr__(self):
        return f"<SyncReport state={self.state} sent={len(self.outcomes)} message={self.message!r}>"


def _record_label(record: dict) -> str:
    return record.get("name") or record.get("username") or record.get("folio") or f"ID: {record.get('id')}"


class SyncService:
    """Drives push/pull cycles for the current session.

    Args:
        store: DurableStore.
        gateway: SyncGateway.
        session: SessionService (provides the bearer token and actor).
        audit: AuditService.
        repositories: objects with ``load()`` refreshed after a successful apply.
        clock: epoch-milliseconds callable.
    """

    def __init__(self, store, gateway, session, audit, repositories=(), clock=now_ms) -> None:
        self.store = store
        self.gateway = gateway
        self.session = session
        self.audit = audit
        self.repositories = list(repositories)
        self.clock = clock
        self._state = STATE_IDLE
        self._revert_at: int | None = None
        self._online = True
        self._notices: list[dict] = []
        self.last_report: SyncReport | None = None

    # ── State ────────────────────────────────────────────────────────────

    @property
    def state(self) -> str:
        if self._revert_at is not None and self.clock() >= self._revert_at:
            self._state, self._revert_at = STATE_IDLE, None
        return self._state

    def _set_state(self, state: str, revert_after_ms: int | None = None) -> None:
        self._state = state
        self._revert_at = self.clock() + revert_after_ms if revert_after_ms else None
        logger.debug("Sync state → %s", state, extra={"sync_state": state})

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def last_sync_timestamp(self) -> int:
        return self.store.get_state(STATE_LAST_SYNC, 0)

    # ── Notices ──────────────────────────────────────────────────────────

    def notify(self, message: str, level: str = "info") -> None:
        self._notices.append({"level": level, "message": message, "timestamp": self.clock()})

    @property
    def notices(self) -> list[dict]:
        return list(self._notices)

    def drain_notices(self) -> list[dict]:
        notices, self._notices = self._notices, []
        return notices

    # ── Network ──────────────────────────────────────────────────────────

    def set_network(self, online: bool) -> SyncReport | None:
        """Record a connectivity change. Regaining the network triggers a sync."""
        if not online:
            self._online = False
            self._set_state(STATE_NO_NETWORK)
            self.notify(MSG_NETWORK_LOST, "warning")
            return None
        if self._online:
            return None
        self._online = True
        self._set_state(STATE_IDLE)
        self.notify(MSG_NETWORK_RESTORED, "success")
        return self.run_sync()

    # ── Outbound set ─────────────────────────────────────────────────────

    def collect_changes(self) -> tuple[dict, list[dict]]:
        """``pending`` and ``error`` records per syncable collection, plus audit entries."""
        changes = {}
        for collection in SYNCABLE_COLLECTIONS:
            records = self._unsynced(collection)
            if records:
                changes[collection] = records
        return changes, self._unsynced(AUDIT_COLLECTION)

    def _unsynced(self, collection: str) -> list[dict]:
        return (self.store.get_all_by_index(collection, "syncStatus", SYNC_PENDING)
                + self.store.get_all_by_index(collection, "syncStatus", SYNC_ERROR))

    def pending_count(self) -> int:
        changes, audit_logs = self.collect_changes()
        return sum(len(v) for v in changes.values()) + len(audit_logs)

    def errored_records(self) -> list[dict]:
        """Every record currently flagged ``error``, tagged with its collection."""
        errored = []
        for collection in PUSHED_COLLECTIONS:
            for record in self.store.get_all_by_index(collection, "syncStatus", SYNC_ERROR):
                errored.append({"collection": collection, "label": _record_label(record), **record})
        return errored

    # ── Run ──────────────────────────────────────────────────────────────

    def _refuse(self) -> SyncReport | None:
        if not self._online:
            self._set_state(STATE_NO_NETWORK)
            self.notify(MSG_OFFLINE, "error")
            return SyncReport(STATE_NO_NETWORK, MSG_OFFLINE, skipped=True)
        if self.state == STATE_SYNCING:
            self.notify(MSG_ALREADY_SYNCING, "info")
            return SyncReport(STATE_SYNCING, MSG_ALREADY_SYNCING, skipped=True)
        if not self.session.token:
            self.notify(MSG_LOGIN_REQUIRED, "error")
            return SyncReport(self.state, MSG_LOGIN_REQUIRED, skipped=True)
        return None

    def run_sync(self) -> SyncReport:
        """Push every pending change and apply the server's answer."""
        return self._guarded(self._run)

    def bootstrap(self) -> SyncReport:
        """Replace every syncable collection with the server's full dataset.

        Only safe when nothing is pending locally; that is the caller's call.
        """
        return self._guarded(self._bootstrap)

    def _guarded(self, step) -> SyncReport:
        refused = self._refuse()
        if refused is not None:
            return refused

        self._set_state(STATE_SYNCING)
        try:
            report = step()
        except Exception:
            # Leave the engine usable; the store already rolled back.
            logger.exception("Unexpected sync failure", extra={"sync_state": STATE_ERROR})
            self._set_state(STATE_ERROR, ERROR_IDLE_MS)
            self.notify(MSG_TRANSPORT_FAILED, "error")
            raise
        self.last_report = report
        return report

    def _run(self) -> SyncReport:
        changes, audit_logs = self.collect_changes()
        change_count = sum(len(v) for v in changes.values())

        if change_count == 0 and not audit_logs:
            self._set_state(STATE_SUCCESS, SUCCESS_IDLE_MS)
            self.notify(MSG_UP_TO_DATE, "success")
            return SyncReport(STATE_SUCCESS, MSG_UP_TO_DATE)

        payload = {
            "lastSyncTimestamp": self.last_sync_timestamp,
            "changes": changes,
            "auditLogs": audit_logs,
        }
        result = self.gateway.push_changes(self.session.token, payload)
        if not result.ok:
            return self._transport_failed(MSG_TRANSPORT_FAILED, result.error)

        try:
            response = self._parse_sync_response(result.data)
        except MalformedResponseError as exc:
            return self._transport_failed(MSG_MALFORMED, str(exc))

        sent = {c: records for c, records in changes.items()}
        if audit_logs:
            sent[AUDIT_COLLECTION] = audit_logs

        try:
            report = self._apply(sent, response)
        except StorageError as exc:
            logger.error("Sync apply rolled back: %s", exc, extra={"sync_state": STATE_ERROR})
            self._set_state(STATE_ERROR, ERROR_IDLE_MS)
            self.notify(MSG_APPLY_FAILED, "error")
            return SyncReport(STATE_ERROR, MSG_APPLY_FAILED)

        self._reload_caches()
        actor = (self.session.current_user or {}).get("username")
        self.audit.add_log(actor, "Sync Completed", {
            "changesSent": change_count + len(audit_logs),
            "errors": len(response["errors"]),
            "conflicts": len(response["conflicts"]),
        })
        logger.info(
            "Sync completed sent=%d accepted=%d rejected=%d superseded=%d payload=%s",
            len(report.outcomes), len(report.accepted), len(report.rejected), len(report.superseded),
            (result.payload_hash or "")[:12],
            extra={"sync_state": report.state, "duration_ms": result.duration_ms},
        )
        return report

    def _transport_failed(self, message: str, error: str | None) -> SyncReport:
        logger.warning("Sync aborted: %s", error, extra={"sync_state": STATE_ERROR})
        self._set_state(STATE_ERROR, ERROR_IDLE_MS)
        self.notify(message, "error")
        return SyncReport(STATE_ERROR, message)

    # ── Response handling ────────────────────────────────────────────────

    @staticmethod
    def _parse_updates(raw, allowed: tuple) -> dict[str, list[dict]]:
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise MalformedResponseError("updates must be an object")
        updates = {}
        for name, records in raw.items():
            collection = resolve_collection(name)
            if collection not in allowed:
                raise MalformedResponseError(f"unknown collection {name!r}")
            if not isinstance(records, list) or not all(
                isinstance(r, dict) and r.get("id") for r in records
            ):
                raise MalformedResponseError(f"{name} must be a list of records with ids")
            updates.setdefault(collection, []).extend(records)
        return updates

    @classmethod
    def _parse_sync_response(cls, data) -> dict:
        if not isinstance(data, dict):
            raise MalformedResponseError("response body must be an object")
        new_ts = data.get("newSyncTimestamp")
        if isinstance(new_ts, bool) or not isinstance(new_ts, (int, float)):
            raise MalformedResponseError("newSyncTimestamp missing")
        errors = data.get("errors") or []
        conflicts = data.get("conflicts") or []
        if not isinstance(errors, list) or not all(
            isinstance(e, dict) and e.get("clientRecordId") for e in errors
        ):
            raise MalformedResponseError("errors must be a list of {clientRecordId, message}")
        if not isinstance(conflicts, list):
            raise MalformedResponseError("conflicts must be a list")
        return {
            "updates": cls._parse_updates(data.get("updates"), PUSHED_COLLECTIONS),
            "errors": errors,
            "conflicts": [c if isinstance(c, dict) else {"message": str(c)} for c in conflicts],
            "newSyncTimestamp": int(new_ts),
        }

    def _as_synced(self, record: dict) -> dict:
        record = copy.deepcopy(record)
        record["syncStatus"] = SYNC_SYNCED
        record.pop("syncError", None)
        record.setdefault("isDeleted", False)
        record.setdefault("lastModified", self.clock())
        return record

    def _apply_update(self, collection: str, incoming: dict) -> None:
        merged = self.store.get(collection, incoming["id"]) or {}
        merged.update(incoming)
        self.store.put(collection, self._as_synced(merged))

    def _apply(self, sent: dict[str, list[dict]], response: dict) -> SyncReport:
        errors = {str(e["clientRecordId"]): str(e.get("message") or "") for e in response["errors"]}
        conflicted = {str(c["clientRecordId"]) for c in response["conflicts"] if c.get("clientRecordId")}

        report = SyncReport(STATE_SUCCESS)
        report.conflicts = response["conflicts"]
        updated = set()
        # server errors first, so they win over update failures for the same id
        record_errors = dict(errors)
        # notices wait for the commit; a rolled-back apply changed nothing
        notices: list[tuple[str, str]] = []

        with self.store.transaction():
            # 1. confirmations
            for collection, records in sent.items():
                for record in records:
                    if record["id"] in errors:
                        continue
                    current = self.store.get(collection, record["id"])
                    if current is not None:
                        self.store.put(collection, self._as_synced(current))

            # 2. server-pushed updates win over the local copy, one savepoint each
            for collection, records in response["updates"].items():
                for incoming in records:
                    rid = incoming["id"]
                    try:
                        with self.store.savepoint():
                            self._apply_update(collection, incoming)
                    except StorageError as exc:
                        logger.warning("Server update %s/%s not applied: %s", collection, rid, exc,
                                       extra={"collection": collection, "record_id": rid})
                        report.unapplied.append(
                            RecordOutcome(collection, rid, OUTCOME_REJECTED, MSG_UPDATE_CONFLICT)
                        )
                        notices.append((MSG_UPDATE_NOT_APPLIED.format(
                            label=_record_label(incoming), message=MSG_UPDATE_CONFLICT), "error"))
                        if self.store.get(collection, rid) is not None:
                            record_errors.setdefault(rid, MSG_UPDATE_CONFLICT)
                        continue
                    updated.add((collection, rid))
                    report.applied += 1

            # 3. per-record errors
            for record_id, message in record_errors.items():
                located = self._mark_error(record_id, message)
                if located is None:
                    logger.warning("Sync error for unknown record %s", record_id,
                                   extra={"record_id": record_id})
                    continue
                if record_id in errors:
                    notices.append((MSG_RECORD_ERROR.format(label=_record_label(located), message=message),
                                    "error"))

            # 5. watermark; held back so an unapplied update is offered again
            if not report.unapplied:
                self.store.set_state(STATE_LAST_SYNC, response["newSyncTimestamp"])

        for message, level in notices:
            self.notify(message, level)

        # 4. conflicts are surfaced only
        for conflict in response["conflicts"]:
            self.notify(conflict.get("message") or "Conflicto resuelto por el servidor.", "info")

        for collection, records in sent.items():
            for record in records:
                rid = record["id"]
                if rid in record_errors:
                    report.outcomes.append(RecordOutcome(collection, rid, OUTCOME_REJECTED, record_errors[rid]))
                elif rid in conflicted or (collection, rid) in updated:
                    report.outcomes.append(RecordOutcome(collection, rid, OUTCOME_SUPERSEDED))
                else:
                    report.outcomes.append(RecordOutcome(collection, rid, OUTCOME_ACCEPTED))

        if not report.unapplied:
            report.new_sync_timestamp = response["newSyncTimestamp"]
        if record_errors or report.unapplied:
            report.state, report.message = STATE_ERROR, MSG_COMPLETED_WITH_ERRORS
            self._set_state(STATE_ERROR)
            self.notify(MSG_COMPLETED_WITH_ERRORS, "warning")
        else:
            report.message = MSG_COMPLETED
            self._set_state(STATE_SUCCESS, SUCCESS_IDLE_MS)
            self.notify(MSG_COMPLETED, "success")
        return report

    def _mark_error(self, record_id: str, message: str) -> dict | None:
        for collection in PUSHED_COLLECTIONS:
            record = self.store.get(collection, record_id)
            if record is not None:
                record["syncStatus"] = SYNC_ERROR
                record["syncError"] = message
                self.store.put(collection, record)
                return record
        return None

    def _reload_caches(self) -> None:
        for repository in self.repositories:
            repository.load()

    # ── Bootstrap ────────────────────────────────────────────────────────

    def _bootstrap(self) -> SyncReport:
        result = self.gateway.fetch_bootstrap(self.session.token)
        if not result.ok:
            return self._transport_failed(MSG_TRANSPORT_FAILED, result.error)

        try:
            data = result.data if isinstance(result.data, dict) else None
            if data is None:
                raise MalformedResponseError("response body must be an object")
            new_ts = data.get("newSyncTimestamp")
            if isinstance(new_ts, bool) or not isinstance(new_ts, (int, float)):
                raise MalformedResponseError("newSyncTimestamp missing")
            dataset = self._parse_updates(data.get("data") or {}, PUSHED_COLLECTIONS)
        except MalformedResponseError as exc:
            return self._transport_failed(MSG_MALFORMED, str(exc))

        report = SyncReport(STATE_SUCCESS, MSG_BOOTSTRAP_DONE)
        try:
            with self.store.transaction():
                for collection in PUSHED_COLLECTIONS:
                    self.store.clear(collection)
                for collection, records in dataset.items():
                    for record in records:
                        self.store.put(collection, self._as_synced(record))
                        report.applied += 1
                self.store.set_state(STATE_LAST_SYNC, int(new_ts))
        except StorageError as exc:
            logger.error("Bootstrap rolled back: %s", exc, extra={"sync_state": STATE_ERROR})
            self._set_state(STATE_ERROR, ERROR_IDLE_MS)
            self.notify(MSG_APPLY_FAILED, "error")
            return SyncReport(STATE_ERROR, MSG_APPLY_FAILED)

        report.new_sync_timestamp = int(new_ts)
        self._reload_caches()
        self._set_state(STATE_SUCCESS, SUCCESS_IDLE_MS)
        self.notify(MSG_BOOTSTRAP_DONE, "success")
        logger.info("Bootstrap applied %d records", report.applied, extra={"sync_state": STATE_SUCCESS})
        return report
