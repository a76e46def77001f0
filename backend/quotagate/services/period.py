"""
Accounting period arithmetic.

Usage is accounted per UTC calendar month. These helpers are pure functions of
the instant they are given; nothing here touches storage.
"""
import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


@dataclass(frozen=True)
class AccountingPeriod:
    start: datetime # first instant of the month
    end: datetime # last instant of the month, inclusive

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) <= self.end


def ensure_utc(instant: datetime) -> datetime:
    """
    Return `instant` as an aware UTC datetime.
    Naive values (as returned by SQLite) are taken to already be UTC.
    """
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def current_period(now: datetime | None = None) -> AccountingPeriod:
    """
    Compute the accounting period containing `now` (defaults to the current time).
    """
    now = ensure_utc(now) if now is not None else utcnow()
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    end = add_months(start, 1) - timedelta(microseconds=1)
    return AccountingPeriod(start=start, end=end)


def add_months(instant: datetime, months: int) -> datetime:
    """
    Shift `instant` by a number of calendar months, clamping the day to the
    length of the target month (Jan 31 + 1 month -> Feb 28/29).
    """
    month_index = instant.month - 1 + months
    year = instant.year + month_index // 12
    month = month_index % 12 + 1
    day = min(instant.day, calendar.monthrange(year, month)[1])
    return instant.replace(year=year, month=month, day=day)
