"""Exception taxonomy for sync and artifact processing.

Only ``ListingFailure`` and ``StoreUnavailable`` escape a sync cycle.
The per-item failures are caught where they occur, logged, and turned
into absence.
"""

from __future__ import annotations


class PollStoreError(Exception):
    """Base class for pollstore errors."""


class ListingFailure(PollStoreError):
    """The candidate listing could not be retrieved or parsed."""


class DetailFetchFailure(PollStoreError):
    """Full payload for one id could not be retrieved."""

    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(f"Detail fetch failed for {item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason


class AttachmentFetchFailure(PollStoreError):
    """An attachment could not be downloaded."""


class ExtractionFailure(PollStoreError):
    """An attachment was downloaded but its text could not be read."""


class StoreUnavailable(PollStoreError):
    """The storage backend cannot be reached."""
