"""Lexical relevance selection over attachment chunks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

from pollstore.ingestion.pipeline import ArtifactPipeline
from pollstore.models import Chunk

LOGGER = logging.getLogger(__name__)

MIN_TERM_LENGTH = 3


@dataclass(slots=True)
class ScoredChunk:
    chunk: Chunk
    score: int


def query_terms(query: str) -> List[str]:
    """Distinct lowercase terms longer than two characters, in query order."""
    terms: List[str] = []
    for term in query.lower().split():
        if len(term) >= MIN_TERM_LENGTH and term not in terms:
            terms.append(term)
    return terms


def score_chunk(text: str, terms: Sequence[str]) -> int:
    lowered = text.lower()
    return sum(1 for term in terms if term in lowered)


class RelevanceSelector:
    """Ranks cached chunks by how many distinct query terms they contain."""

    def __init__(self, pipeline: ArtifactPipeline) -> None:
        self.pipeline = pipeline

    def select(
        self, attachment_ids: Sequence[str], query: str, *, limit: int = 10
    ) -> List[ScoredChunk]:
        terms = query_terms(query)
        if not terms or limit <= 0:
            return []

        scored: List[tuple[int, int, ScoredChunk]] = []
        seen = set()
        for position, attachment_id in enumerate(attachment_ids):
            if attachment_id in seen:
                continue
            seen.add(attachment_id)
            chunks = self.pipeline.get_chunks(attachment_id)
            if not chunks:
                LOGGER.debug("No chunks for %s, contributes nothing", attachment_id)
                continue
            for chunk in chunks:
                score = score_chunk(chunk.text, terms)
                if score > 0:
                    scored.append((position, chunk.index, ScoredChunk(chunk, score)))

        # stable sort keeps (attachment, sequence) order among equal scores
        scored.sort(key=lambda item: (item[0], item[1]))
        scored.sort(key=lambda item: item[2].score, reverse=True)
        return [item[2] for item in scored[:limit]]
