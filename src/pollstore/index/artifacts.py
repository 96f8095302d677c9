"""Chunk cache keyed by attachment id."""

from __future__ import annotations

import json
import logging
from typing import Optional

from pollstore.index.backends import KeyValueBackend
from pollstore.models import Artifact

LOGGER = logging.getLogger(__name__)


class ArtifactCache:
    """Create-if-absent storage for computed artifacts.

    Entries never expire. Concurrent writers for one id store identical
    values, so the last write simply wins.
    """

    prefix = "artifact:"

    def __init__(self, backend: KeyValueBackend) -> None:
        self.backend = backend

    def _key(self, attachment_id: str) -> str:
        return self.prefix + attachment_id

    def get(self, attachment_id: str) -> Optional[Artifact]:
        raw = self.backend.get(self._key(attachment_id))
        if raw is None:
            return None
        try:
            return Artifact.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Discarding unreadable artifact %s: %s", attachment_id, exc)
            return None

    def put(self, artifact: Artifact) -> None:
        self.backend.set(
            self._key(artifact.attachment_id), json.dumps(artifact.to_dict(), ensure_ascii=True)
        )
