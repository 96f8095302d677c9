"""Record persistence keyed by id, with date range lookups."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timezone
from typing import List, Optional

from pollstore.index.backends import KeyValueBackend
from pollstore.index.date_index import DateIndex, day_key
from pollstore.models import Record

LOGGER = logging.getLogger(__name__)


def _as_bounds(start: date | datetime, end: date | datetime) -> tuple[datetime, datetime]:
    """Normalize a range to aware datetimes; bare dates cover whole days."""
    if not isinstance(start, datetime):
        start = datetime.combine(start, time.min)
    if not isinstance(end, datetime):
        end = datetime.combine(end, time.max)
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return start, end


class RecordStore:
    """Canonical records on a key-value backend, maintained with a DateIndex."""

    prefix = "record:"

    def __init__(self, backend: KeyValueBackend, date_index: DateIndex) -> None:
        self.backend = backend
        self.date_index = date_index

    def _key(self, record_id: str) -> str:
        return self.prefix + record_id

    def get(self, record_id: str) -> Optional[Record]:
        raw = self.backend.get(self._key(record_id))
        if raw is None:
            return None
        try:
            return Record.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Discarding unreadable record %s: %s", record_id, exc)
            return None

    def put(self, record: Record) -> None:
        """Replace the stored value for ``record.id`` and move its index entry."""
        previous = self.get(record.id)
        self.backend.set(
            self._key(record.id), json.dumps(record.to_dict(), ensure_ascii=True, sort_keys=True)
        )
        if previous is not None and day_key(previous.date) != day_key(record.date):
            self.date_index.remove(record.id, previous.date)
        self.date_index.add(record.id, record.date)

    def range(self, start: date | datetime, end: date | datetime) -> List[Record]:
        """Records whose date falls in ``[start, end]``, newest first."""
        start_dt, end_dt = _as_bounds(start, end)
        if start_dt > end_dt:
            return []
        records: List[Record] = []
        for record_id in self.date_index.ids_between(start_dt, end_dt):
            record = self.get(record_id)
            if record is None:
                LOGGER.debug("Index entry %s no longer resolves, skipping", record_id)
                continue
            if not start_dt <= record.date <= end_dt:
                continue
            records.append(record)
        records.sort(key=lambda r: (r.date, r.id), reverse=True)
        return records
