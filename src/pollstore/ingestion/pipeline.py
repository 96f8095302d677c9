"""Attachment fetch -> extract -> chunk -> cache pipeline."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pollstore.errors import AttachmentFetchFailure, ExtractionFailure
from pollstore.index.artifacts import ArtifactCache
from pollstore.ingestion.pdf_loader import extract_text
from pollstore.models import Artifact, Chunk
from pollstore.sources.base import AttachmentSource
from pollstore.utils.text import chunk_text

LOGGER = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    CACHED = "cached"
    BUILT = "built"
    FETCH_FAILED = "fetch_failed"
    EXTRACTION_FAILED = "extraction_failed"
    EMPTY = "empty"


@dataclass(slots=True)
class PipelineResult:
    attachment_id: str
    outcome: Outcome
    chunks: List[Chunk] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.CACHED, Outcome.BUILT)


class ArtifactPipeline:
    """Produces chunk lists for attachments, computing each at most once per cache."""

    def __init__(
        self,
        source: AttachmentSource,
        cache: ArtifactCache,
        *,
        target_size: int = 1000,
        overlap: int = 200,
        min_chars: Optional[int] = None,
        extractor: Callable[[bytes], str] = extract_text,
    ) -> None:
        self.source = source
        self.cache = cache
        self.target_size = target_size
        self.overlap = overlap
        self.min_chars = min_chars
        self.extractor = extractor

    def cached_chunks(self, attachment_id: str) -> Optional[List[Chunk]]:
        artifact = self.cache.get(attachment_id)
        return artifact.chunks if artifact is not None else None

    def process(self, attachment_id: str) -> PipelineResult:
        """Return chunks for ``attachment_id``, building them on a cache miss."""
        cached = self.cached_chunks(attachment_id)
        if cached:
            return PipelineResult(attachment_id, Outcome.CACHED, cached)

        try:
            data = self.source.fetch_attachment(attachment_id)
        except AttachmentFetchFailure as exc:
            LOGGER.warning("Could not fetch attachment %s: %s", attachment_id, exc)
            data = None
        if data is None:
            LOGGER.warning("Attachment %s unavailable", attachment_id)
            return PipelineResult(attachment_id, Outcome.FETCH_FAILED)

        try:
            text = self.extractor(data)
        except ExtractionFailure as exc:
            LOGGER.warning("Fetched attachment %s but could not read it: %s", attachment_id, exc)
            return PipelineResult(attachment_id, Outcome.EXTRACTION_FAILED)

        pieces = chunk_text(
            text, target_size=self.target_size, overlap=self.overlap, min_chars=self.min_chars
        )
        if not pieces:
            LOGGER.warning("Attachment %s produced no chunks", attachment_id)
            return PipelineResult(attachment_id, Outcome.EMPTY)

        chunks = [Chunk(attachment_id, index, piece) for index, piece in enumerate(pieces)]
        self.cache.put(
            Artifact(
                attachment_id=attachment_id,
                chunks=chunks,
                target_size=self.target_size,
                overlap=self.overlap,
                created_at=datetime.now(timezone.utc),
            )
        )
        LOGGER.info("Cached %d chunks for attachment %s", len(chunks), attachment_id)
        return PipelineResult(attachment_id, Outcome.BUILT, chunks)

    def get_chunks(self, attachment_id: str, fetch: bool = True) -> Optional[List[Chunk]]:
        """Chunks for ``attachment_id``; with ``fetch=False`` only the cache is consulted."""
        if not fetch:
            return self.cached_chunks(attachment_id) or None
        result = self.process(attachment_id)
        return result.chunks if result.ok else None
