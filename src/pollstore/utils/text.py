"""Text helpers including paragraph-aware chunking."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
INLINE_SPACE = re.compile(r"[ \t\f\v]+")

OVERSIZE_FACTOR = 1.5
DEFAULT_MIN_CHARS = 50


def split_paragraphs(text: str) -> List[str]:
    return [part.strip() for part in PARAGRAPH_BREAK.split(text) if part.strip()]


def split_sentences(text: str) -> List[str]:
    return [part.strip() for part in SENTENCE_BREAK.split(text) if part.strip()]


def _seed(closed: str, overlap: int) -> str:
    return closed[-overlap:] if overlap > 0 else ""


def _join(current: str, piece: str, sep: str) -> str:
    return f"{current}{sep}{piece}" if current else piece


def _hard_split(text: str, target_size: int, overlap: int, out: List[str]) -> str:
    step = max(target_size - overlap, 1)
    start = 0
    while len(text) - start > target_size:
        out.append(text[start : start + target_size])
        start += step
    return text[start:]


def _accumulate(
    pieces: Iterable[str],
    target_size: int,
    overlap: int,
    sep: str,
    out: List[str],
    level: int,
    prefix: str = "",
    prefix_sep: str = "",
) -> str:
    """Pack pieces into chunks, appending closed chunks to ``out``.

    ``prefix`` is overlap carried over from an already closed chunk. It is
    kept verbatim, joined to the first piece with ``prefix_sep``, and is
    never closed as a chunk on its own. Returns the still-open trailing
    chunk.
    """
    current = prefix
    joiner = prefix_sep
    has_new = False
    for piece in pieces:
        if has_new and len(current) + len(joiner) + len(piece) > target_size:
            out.append(current)
            current = _seed(current, overlap)
            has_new = False

        joined = _join(current, piece, joiner)
        if len(joined) > target_size * OVERSIZE_FACTOR:
            # only the new piece is re-split; the carried overlap stays a prefix
            sentences = split_sentences(piece) if level == 0 else []
            if len(sentences) > 1:
                current = _accumulate(
                    sentences, target_size, overlap, " ", out, level + 1, current, joiner
                )
            else:
                current = _hard_split(joined, target_size, overlap, out)
        else:
            current = joined
        joiner = sep
        has_new = True
    return current


def chunk_text(
    text: str,
    *,
    target_size: int = 1000,
    overlap: int = 200,
    min_chars: Optional[int] = None,
) -> List[str]:
    """Split text into overlapping chunks along paragraph boundaries.

    Paragraphs (blank-line separated) are packed into chunks of about
    ``target_size`` characters. Each new chunk starts with the trailing
    ``overlap`` characters of the previous one. A chunk that grows past
    1.5x the target is re-packed sentence by sentence, and a single sentence
    that is still too long is cut into fixed windows.

    Chunks shorter than ``min_chars`` are dropped unless only one chunk was
    produced. The default floor is 50 characters, capped at a quarter of
    ``target_size`` so small targets keep their chunks.

    The function is pure: the same arguments always give the same chunks.
    """
    if target_size <= 0:
        raise ValueError("target_size must be positive")
    if not text or not text.strip():
        return []
    overlap = max(0, min(overlap, target_size - 1))
    if min_chars is None:
        min_chars = min(DEFAULT_MIN_CHARS, target_size // 4)

    chunks: List[str] = []
    tail = _accumulate(split_paragraphs(text), target_size, overlap, "\n\n", chunks, 0)
    if tail.strip():
        chunks.append(tail)
    chunks = [chunk for chunk in chunks if chunk.strip()]

    if len(chunks) > 1:
        return [chunk for chunk in chunks if len(chunk) >= min_chars]
    return chunks


def normalize_whitespace(text: str) -> str:
    """Collapse inline whitespace and runs of blank lines, keeping paragraph breaks."""
    lines = [INLINE_SPACE.sub(" ", line).strip() for line in text.splitlines()]
    out: List[str] = []
    for line in lines:
        if line:
            out.append(line)
        elif out and out[-1] != "":
            out.append("")
    while out and out[-1] == "":
        out.pop()
    return "\n".join(out)
