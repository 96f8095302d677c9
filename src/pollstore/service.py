"""Read and sync facade wiring stores, pipeline and source together."""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Sequence

from pollstore.config import AppConfig
from pollstore.index.artifacts import ArtifactCache
from pollstore.index.backends import KeyValueBackend, create_backend
from pollstore.index.date_index import DateIndex
from pollstore.index.records import RecordStore
from pollstore.index.search import RelevanceSelector
from pollstore.ingestion.pipeline import ArtifactPipeline
from pollstore.models import Chunk, Record
from pollstore.sources.base import Source
from pollstore.sync.engine import SyncEngine, SyncStats
from pollstore.sync.fetcher import DetailFetcher

LOGGER = logging.getLogger(__name__)


class PollStore:
    """Owns one backend and exposes the outbound query interface.

    ``source`` must provide listing, detail and attachment access; pass
    ``None`` for a read-only instance that can only serve cached data.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        source: Source | None = None,
        *,
        config: AppConfig | None = None,
    ) -> None:
        self.config = config or AppConfig(backend="memory")
        self.backend = backend
        self.source = source
        self.date_index = DateIndex(backend, ttl_days=self.config.index_ttl_days)
        self.records = RecordStore(backend, self.date_index)
        self.artifacts = ArtifactCache(backend)
        self.pipeline = ArtifactPipeline(
            source if source is not None else _NoAttachments(),
            self.artifacts,
            target_size=self.config.chunk_chars,
            overlap=self.config.overlap,
            min_chars=self.config.min_chunk_chars,
        )
        self.selector = RelevanceSelector(self.pipeline)

    @classmethod
    def from_config(
        cls, config: AppConfig, source: Source | None = None, *, base_dir: Path | None = None
    ) -> "PollStore":
        return cls(create_backend(config, base_dir), source, config=config)

    def close(self) -> None:
        self.backend.close()

    def sync(self) -> SyncStats:
        if self.source is None:
            raise RuntimeError("PollStore was created without a source")
        fetcher = DetailFetcher(
            self.source, max_workers=self.config.max_workers, site_base=self.config.site_base
        )
        engine = SyncEngine(
            self.source, fetcher, self.records, window_days=self.config.sync_window_days
        )
        return engine.run_cycle()

    def get_record(self, record_id: str) -> Optional[Record]:
        return self.records.get(record_id)

    def get_records_in_range(self, start: date | datetime, end: date | datetime) -> List[Record]:
        return self.records.range(start, end)

    def get_chunks_for_attachment(self, attachment_id: str) -> Optional[List[Chunk]]:
        return self.pipeline.get_chunks(attachment_id)

    def get_relevant_chunks(
        self, attachment_ids: Sequence[str], query: str, limit: int | None = None
    ) -> List[Chunk]:
        limit = self.config.relevant_limit if limit is None else limit
        return [scored.chunk for scored in self.selector.select(attachment_ids, query, limit=limit)]


class _NoAttachments:
    def fetch_attachment(self, attachment_id: str) -> Optional[bytes]:
        LOGGER.debug("No attachment source configured, %s unavailable", attachment_id)
        return None
