"""Concurrent detail fetching for new and changed ids."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Sequence

from pollstore.config import DEFAULT_SITE_BASE
from pollstore.errors import DetailFetchFailure
from pollstore.models import ListingItem, Record
from pollstore.sources.base import DetailSource
from pollstore.sync.parsing import parse_record

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FetchReport:
    fetched: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class DetailFetcher:
    """Fetches and parses full payloads on a bounded worker pool.

    Each record is handed to ``on_record`` as soon as its fetch completes.
    A failed id is skipped for this cycle; its stale marker makes the next
    poll pick it up again.
    """

    def __init__(
        self,
        source: DetailSource,
        *,
        max_workers: int = 8,
        site_base: str = DEFAULT_SITE_BASE,
    ) -> None:
        self.source = source
        self.max_workers = max_workers
        self.site_base = site_base

    def _fetch_one(self, item: ListingItem) -> Record:
        payload = self.source.fetch_detail(item.id)
        return parse_record(
            item.id,
            payload,
            item,
            retrieved_at=datetime.now(timezone.utc),
            site_base=self.site_base,
        )

    def fetch_all(
        self, items: Sequence[ListingItem], on_record: Callable[[Record], None]
    ) -> FetchReport:
        report = FetchReport()
        if not items:
            return report

        workers = max(1, min(self.max_workers, len(items)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="detail") as pool:
            futures: Dict[Future, ListingItem] = {
                pool.submit(self._fetch_one, item): item for item in items
            }
            try:
                for future in as_completed(futures):
                    item = futures[future]
                    try:
                        record = future.result()
                    except DetailFetchFailure as exc:
                        LOGGER.warning("Skipping %s this cycle: %s", item.id, exc.reason)
                        report.failed.append(item.id)
                        continue
                    except Exception as exc:
                        LOGGER.error("Failed to process %s: %s", item.id, exc)
                        report.failed.append(item.id)
                        continue
                    on_record(record)
                    report.fetched.append(item.id)
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return report
