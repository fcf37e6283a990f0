"""Clock and calendar helpers shared by repositories and the sync engine.

Every component takes a ``clock`` callable returning epoch milliseconds so
tests can freeze and advance time.
"""

import random
import string
import time
from datetime import date, datetime, timedelta, timezone

MINUTE_MS = 60 * 1000
DAY_MS = 24 * 60 * MINUTE_MS


def now_ms() -> int:
    """Default clock: wall time in epoch milliseconds."""
    return int(time.time() * 1000)


def to_datetime(ms: int) -> datetime:
    """Epoch milliseconds → naive local datetime."""
    return datetime.fromtimestamp(ms / 1000)


def to_ms(dt: datetime) -> int:
    """Naive local (or aware) datetime → epoch milliseconds."""
    return int(dt.timestamp() * 1000)


def iso_utc(ms: int) -> str:
    """Epoch milliseconds → ``2024-05-21T10:00:00.000Z``."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def random_suffix(length: int = 9) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def new_record_id(ms: int) -> str:
    """Record id in the ``<iso timestamp>-<random>`` form used across collections."""
    return f"{iso_utc(ms)}-{random_suffix()}"


def date_str(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def time_str(dt: datetime) -> str:
    """Display time (HH:MM) stored on embedded log/supplier entries."""
    return dt.strftime("%H:%M")


def local_minute_str(dt: datetime) -> str:
    """``YYYY-MM-DDTHH:MM`` form used for punch display strings."""
    return dt.strftime("%Y-%m-%dT%H:%M")


def parse_local_minute(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M")


def days_between(start: date, end: date) -> int:
    return (end - start).days


def month_days(year: int, month: int) -> list[date]:
    first = date(year, month, 1)
    nxt = date(year + (month // 12), (month % 12) + 1, 1)
    return [first + timedelta(days=i) for i in range((nxt - first).days)]
