"""PDF text extraction.

Uses PyMuPDF (fitz) on in-memory attachment bytes. Text blocks become
paragraphs so the chunker can split on blank lines.
"""

from __future__ import annotations

import logging
from typing import Iterator

import fitz  # PyMuPDF

from pollstore.errors import ExtractionFailure
from pollstore.utils.text import INLINE_SPACE, normalize_whitespace

LOGGER = logging.getLogger(__name__)

TEXT_BLOCK = 0


def _open(data: bytes) -> "fitz.Document":
    if not data:
        raise ExtractionFailure("Empty attachment")
    try:
        return fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ExtractionFailure(f"Not a readable PDF: {exc}") from exc


def iter_text_parts(data: bytes) -> Iterator[str]:
    """Yield the text of each page, one paragraph per text block."""
    doc = _open(data)
    try:
        for index in range(len(doc)):
            try:
                blocks = doc[index].get_text("blocks") or []
            except Exception as exc:  # pragma: no cover
                LOGGER.warning("Failed to read page %s: %s", index, exc)
                continue
            paragraphs = [
                INLINE_SPACE.sub(" ", block[4].replace("\n", " ")).strip()
                for block in blocks
                if len(block) > 6 and block[6] == TEXT_BLOCK
            ]
            page_text = "\n\n".join(p for p in paragraphs if p)
            if page_text:
                yield page_text
    finally:
        doc.close()


def extract_text(data: bytes) -> str:
    """Return the text of a PDF with paragraphs separated by blank lines.

    Raises :class:`ExtractionFailure` when the bytes cannot be opened as a
    PDF or contain no extractable text.
    """
    text = normalize_whitespace("\n\n".join(iter_text_parts(data)))
    if not text:
        raise ExtractionFailure("PDF has no extractable text")
    return text
