"""
Process-scoped client context.

One ``ClientContext`` per Flask app holds every service and repository,
wired explicitly. Nothing in the package reaches for module-level state:
blueprints call ``get_context()``, tests build their own context with a
frozen clock and a mocked HTTP session.

Lifecycle:
    ctx = ClientContext.from_app(app)
    ctx.load_all()        # fill every repository cache
    ctx.session.restore() # pick up a persisted token
    ...
    ctx.logout()          # clear session + derived state
"""

import logging

from flask import current_app

from shiftbook.integrations.sync_gateway import SyncGateway
from shiftbook.repositories.employees import EmployeeRepository
from shiftbook.repositories.notes import MeterReadingRepository, QuickNoteRepository
from shiftbook.repositories.scheduling import AssignedShiftRepository, ShiftPatternRepository
from shiftbook.repositories.shift_reports import ShiftReportRepository
from shiftbook.repositories.time_records import TimeRecordRepository
from shiftbook.repositories.users import UserRepository
from shiftbook.services.audit_service import AuditService
from shiftbook.services.backup_service import BackupService
from shiftbook.services.durable_store import DurableStore
from shiftbook.services.session_service import SessionService
from shiftbook.services.settings_registry import SettingsRegistry
from shiftbook.services.shift_lifecycle import ShiftLogbook
from shiftbook.services.sync_service import SyncService
from shiftbook.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

EXTENSION_KEY = "shiftbook"


class ClientContext:
    def __init__(self, gateway: SyncGateway, clock=now_ms, db_session=None) -> None:
        self.clock = clock
        self.store = DurableStore(db_session)
        self.settings = SettingsRegistry(self.store, clock)
        self.audit = AuditService(self.store, clock)

        self.users = UserRepository(self.store, self.audit, clock)
        self.employees = EmployeeRepository(self.store, self.audit, self.settings, clock)
        self.time_records = TimeRecordRepository(self.store, self.audit, clock)
        self.patterns = ShiftPatternRepository(self.store, self.audit, self.settings, clock)
        self.assignments = AssignedShiftRepository(self.store, self.audit, self.patterns, clock)
        self.reports = ShiftReportRepository(self.store, self.audit, clock)
        self.quick_notes = QuickNoteRepository(self.store, self.audit, clock)
        self.meter_readings = MeterReadingRepository(self.store, self.audit, self.settings, clock)

        self.logbook = ShiftLogbook(
            self.reports, self.settings,
            employees=self.employees,
            assignments=self.assignments,
            time_records=self.time_records,
            clock=clock,
        )
        self.gateway = gateway
        self.session = SessionService(self.store, self.users, self.audit, gateway, clock)
        self.sync = SyncService(self.store, gateway, self.session, self.audit,
                                repositories=self.repositories, clock=clock)
        self.backup = BackupService(self.store, self.audit, repositories=self.repositories)

    @classmethod
    def from_app(cls, app, clock=now_ms, http_session=None) -> "ClientContext":
        gateway = SyncGateway.from_config(app.config, session=http_session)
        return cls(gateway, clock=clock)

    @property
    def repositories(self) -> list:
        """Every cache-owning component, in dependency order."""
        return [
            self.users,
            self.employees,
            self.time_records,
            self.patterns,
            self.assignments,
            self.reports,
            self.quick_notes,
            self.meter_readings,
            self.audit,
        ]

    def load_all(self) -> None:
        for repository in self.repositories:
            repository.load()
        logger.debug("Repository caches loaded")

    def logout(self) -> None:
        self.session.logout()
        self.sync.drain_notices()


def init_client_context(app, clock=now_ms, http_session=None) -> ClientContext:
    """Build (or rebuild) the app's context and warm its caches.

    Must run inside an application context.
    """
    ctx = ClientContext.from_app(app, clock=clock, http_session=http_session)
    ctx.load_all()
    ctx.session.restore()
    app.extensions[EXTENSION_KEY] = ctx
    return ctx


def get_context() -> ClientContext:
    return current_app.extensions[EXTENSION_KEY]
