"""
Counter/Setting Registry: typed get/set over the ``appSettings`` collection.

A counter is a setting holding a monotonically increasing integer. The
consumer pattern is read-current → use it → write back current + 1;
``draw_counter`` does both inside the caller's transaction so the drawn
value is only consumed if the record that uses it is written too.
"""

import logging

from shiftbook.models.base import SYNC_PENDING
from shiftbook.models.settings import AppSetting
from shiftbook.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

COLLECTION = AppSetting.COLLECTION

# ── Known keys ───────────────────────────────────────────────────────────
EMPLOYEE_ID_COUNTER = "employeeIdCounter"
FOLIO_COUNTER = "logbookFolioCounter"
GLOBAL_MAX_WEEKLY_HOURS = "globalMaxWeeklyHours"
GLOBAL_AREA_LIST = "globalAreaList"
METER_CONFIGS = "meterConfigs"

DEFAULT_MAX_WEEKLY_HOURS = 44


class SettingsRegistry:
    def __init__(self, store, clock=now_ms) -> None:
        self.store = store
        self.clock = clock

    def get_value(self, key: str, default=None):
        """Return the stored value for ``key`` or ``default`` when absent."""
        row = self.store.get(COLLECTION, key)
        if row is None or "value" not in row:
            return default
        return row["value"]

    def set_value(self, key: str, value) -> None:
        """Persist ``value`` under ``key``, marking the row for sync.

        Raises:
            StorageError: if the write fails.
        """
        self.store.put(COLLECTION, {
            "id": key,
            "value": value,
            "lastModified": self.clock(),
            "syncStatus": SYNC_PENDING,
            "isDeleted": False,
        })
        logger.debug("Setting %s updated", key, extra={"collection": COLLECTION, "record_id": key})

    def draw_counter(self, key: str, start: int = 1) -> int:
        """Return the current counter value and advance the stored one by 1.

        Must be called inside ``store.transaction()`` together with the
        write that consumes the value.
        """
        current = self.get_value(key, start)
        try:
            current = int(current)
        except (TypeError, ValueError):
            logger.warning("Counter %s held a non-integer value %r; restarting at %d", key, current, start)
            current = start
        self.set_value(key, current + 1)
        return current
