from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from schoolhub.config import settings


APP_TIMEZONE = settings.app_timezone or "Asia/Kolkata"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def utcnow(self) -> datetime:
        """Naive UTC timestamp, the form every DateTime column stores."""
        return to_naive_utc(self.now())


def to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt
    return dt.astimezone(ZoneInfo('UTC')).replace(tzinfo=None)


default_time_provider = TimeProvider()
