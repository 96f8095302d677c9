"""Interfaces the sync engine and artifact pipeline consume.

Implementations talk to the remote source. Everything they return is
treated as untrusted and read tolerantly.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pollstore.models import ListingItem


@runtime_checkable
class ListingSource(Protocol):
    def fetch_listing(self) -> List[ListingItem]:
        """Return every candidate currently listed.

        Raises ``ListingFailure`` when no complete listing is available.
        """
        ...


@runtime_checkable
class DetailSource(Protocol):
    def fetch_detail(self, item_id: str) -> Dict[str, Any]:
        """Return the full loosely-structured payload for one id.

        Raises ``DetailFetchFailure`` on timeouts and server errors.
        """
        ...


@runtime_checkable
class AttachmentSource(Protocol):
    def fetch_attachment(self, attachment_id: str) -> Optional[bytes]:
        """Return attachment bytes, or ``None`` when they cannot be retrieved."""
        ...


@runtime_checkable
class Source(ListingSource, DetailSource, AttachmentSource, Protocol):
    """A source offering listing, detail and attachment access together."""
