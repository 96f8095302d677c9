"""Shared fixtures and fakes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import fitz
import pytest

from pollstore.config import AppConfig
from pollstore.errors import DetailFetchFailure
from pollstore.index.backends import MemoryBackend
from pollstore.index.date_index import DateIndex
from pollstore.index.records import RecordStore
from pollstore.models import ListingItem, Record
from pollstore.service import PollStore

UTC = timezone.utc


def make_record(
    record_id: str = "A",
    *,
    revision: Optional[str] = "r1",
    date: datetime = datetime(2025, 10, 10, 12, 0, tzinfo=UTC),
    **fields: Any,
) -> Record:
    return Record(
        id=record_id,
        revision=revision,
        date=date,
        retrieved_at=datetime(2025, 10, 11, 8, 30, tzinfo=UTC),
        **fields,
    )


def make_pdf(*paragraphs: str) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    y = 72
    for paragraph in paragraphs:
        page.insert_textbox(fitz.Rect(72, y, 540, y + 60), paragraph, fontsize=11)
        y += 120
    data = doc.tobytes()
    doc.close()
    return data


class FakeSource:
    """In-memory listing, detail and attachment source that records calls."""

    def __init__(self) -> None:
        self.listing: List[ListingItem] = []
        self.details: Dict[str, Any] = {}
        self.attachments: Dict[str, Any] = {}
        self.detail_calls: List[str] = []
        self.attachment_calls: List[str] = []

    def list_item(self, item_id: str, revision: Optional[str], date: Optional[datetime]) -> None:
        self.listing = [item for item in self.listing if item.id != item_id]
        self.listing.append(ListingItem(item_id, revision, date, {"id": item_id}))

    def fetch_listing(self) -> List[ListingItem]:
        return list(self.listing)

    def fetch_detail(self, item_id: str) -> Dict[str, Any]:
        self.detail_calls.append(item_id)
        payload = self.details.get(item_id)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            raise DetailFetchFailure(item_id, "HTTP 404")
        return payload

    def fetch_attachment(self, attachment_id: str) -> Optional[bytes]:
        self.attachment_calls.append(attachment_id)
        return self.attachments.get(attachment_id)


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def record_store(backend: MemoryBackend) -> RecordStore:
    return RecordStore(backend, DateIndex(backend))


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def poll_store(backend: MemoryBackend, source: FakeSource) -> PollStore:
    config = AppConfig(backend="memory", chunk_chars=120, overlap=20, min_chunk_chars=10)
    return PollStore(backend, source, config=config)


