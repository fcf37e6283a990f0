"""
Shiftbook offline client
Settings domain model.

Models:
    - AppSetting: synced key/value row behind the Counter/Setting Registry.
    - LocalState: device-local key/value row (schema version, sync watermark,
      session token). Never synced, never exported.
"""

from shiftbook.models import db
from shiftbook.models.base import SyncableMixin

# LocalState keys
STATE_SCHEMA_VERSION = "schemaVersion"
STATE_LAST_SYNC = "lastSyncTimestamp"
STATE_SESSION_TOKEN = "sessionToken"


class AppSetting(SyncableMixin, db.Model):
    __tablename__ = "app_settings"
    COLLECTION = "appSettings"

    value = db.Column(db.JSON, nullable=True)


class LocalState(db.Model):
    __tablename__ = "local_state"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.JSON, nullable=True)

    def __repr__(self):
        return f"<LocalState {self.key}>"
