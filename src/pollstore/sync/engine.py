"""One poll cycle: list, diff, fetch details, persist."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List

from pollstore.errors import StoreUnavailable
from pollstore.index.records import RecordStore
from pollstore.models import ListingItem, Record
from pollstore.sources.base import ListingSource
from pollstore.sync.changes import detect_changes
from pollstore.sync.fetcher import DetailFetcher

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncStats:
    listed: int = 0
    in_window: int = 0
    new: int = 0
    changed: int = 0
    unchanged: int = 0
    fetched: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)


class SyncEngine:
    """Keeps a RecordStore consistent with a polled source.

    There is no retry scheduler: ids that fail keep their old marker and
    are fetched again on the next cycle, so the poll interval is the retry
    interval.
    """

    def __init__(
        self,
        listing: ListingSource,
        fetcher: DetailFetcher,
        store: RecordStore,
        *,
        window_days: int = 7,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.listing = listing
        self.fetcher = fetcher
        self.store = store
        self.window_days = window_days
        self.clock = clock

    def _in_window(self, item: ListingItem, start: datetime) -> bool:
        return item.date is None or item.date >= start

    def _stored_for(
        self, candidates: List[ListingItem], start: datetime, end: datetime
    ) -> Dict[str, Record]:
        stored = {record.id: record for record in self.store.range(start, end)}
        for item in candidates:
            if item.id not in stored:
                record = self.store.get(item.id)
                if record is not None:
                    stored[item.id] = record
        return stored

    def run_cycle(self) -> SyncStats:
        """Run one poll cycle.

        ``ListingFailure`` and ``StoreUnavailable`` propagate; per-id detail
        failures are counted in the returned stats.
        """
        now = self.clock()
        start = now - timedelta(days=self.window_days)
        stats = SyncStats()

        candidates = self.listing.fetch_listing()
        stats.listed = len(candidates)
        candidates = [item for item in candidates if self._in_window(item, start)]
        stats.in_window = len(candidates)
        LOGGER.info(
            "Polled %d items, %d in the %d-day window",
            stats.listed,
            stats.in_window,
            self.window_days,
        )

        try:
            stored = self._stored_for(candidates, start, now)
        except StoreUnavailable as exc:
            LOGGER.error("Store unavailable, aborting cycle: %s", exc)
            raise
        changes = detect_changes(candidates, stored)
        stats.new = len(changes.new)
        stats.changed = len(changes.changed)
        stats.unchanged = len(changes.unchanged)
        for item in changes.new:
            LOGGER.info("New item: %s", item.id)
        for item in changes.changed:
            LOGGER.info("Updated item: %s", item.id)

        try:
            report = self.fetcher.fetch_all(changes.to_fetch, self.store.put)
        except StoreUnavailable as exc:
            LOGGER.error("Store unavailable, aborting cycle: %s", exc)
            raise
        stats.fetched = len(report.fetched)
        stats.failed = len(report.failed)
        stats.failed_ids = sorted(report.failed)
        LOGGER.info(
            "Fetched %d of %d new/updated items (%d failed)",
            stats.fetched,
            len(changes.to_fetch),
            stats.failed,
        )
        return stats
