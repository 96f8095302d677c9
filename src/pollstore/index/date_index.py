"""Secondary index from calendar day to record ids."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Set

from pollstore.index.backends import KeyValueBackend

DAY_SECONDS = 24 * 60 * 60


def day_key(value: date | datetime) -> str:
    """Bucket key for the calendar day of ``value`` (``YYYY-MM-DD``).

    Aware datetimes are bucketed by their UTC day.
    """
    return _as_day(value).isoformat()


def _as_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each calendar day in the inclusive span ``[start, end]``."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class DateIndex:
    """Day buckets of record ids with a rolling per-bucket expiry."""

    prefix = "dateidx:"

    def __init__(self, backend: KeyValueBackend, *, ttl_days: int = 30) -> None:
        self.backend = backend
        self.ttl = ttl_days * DAY_SECONDS

    def _key(self, value: date | datetime) -> str:
        return self.prefix + day_key(value)

    def add(self, record_id: str, value: date | datetime) -> None:
        self.backend.sadd(self._key(value), record_id, ttl=self.ttl)

    def remove(self, record_id: str, value: date | datetime) -> None:
        self.backend.srem(self._key(value), record_id)

    def ids_for_day(self, value: date | datetime) -> Set[str]:
        return self.backend.smembers(self._key(value))

    def ids_between(self, start: date | datetime, end: date | datetime) -> Set[str]:
        ids: Set[str] = set()
        for day in iter_days(_as_day(start), _as_day(end)):
            ids |= self.ids_for_day(day)
        return ids
