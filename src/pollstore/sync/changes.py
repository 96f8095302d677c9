"""Change detection between a polled listing and stored revision markers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional

from pollstore.models import ListingItem, Record

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChangeSet:
    new: List[ListingItem] = field(default_factory=list)
    changed: List[ListingItem] = field(default_factory=list)
    unchanged: List[ListingItem] = field(default_factory=list)

    @property
    def to_fetch(self) -> List[ListingItem]:
        return self.new + self.changed


def _marker(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def detect_changes(
    candidates: Iterable[ListingItem], stored: Mapping[str, Record]
) -> ChangeSet:
    """Partition candidates into new, changed and unchanged.

    A candidate whose marker is missing on either side counts as changed,
    so doubt always leads to a re-fetch.
    """
    result = ChangeSet()
    seen = set()
    for item in candidates:
        if not item.id:
            LOGGER.debug("Ignoring candidate without id")
            continue
        if item.id in seen:
            continue
        seen.add(item.id)

        record = stored.get(item.id)
        if record is None:
            result.new.append(item)
            continue

        listed = _marker(item.revision)
        known = _marker(record.revision)
        if listed is None or known is None or listed != known:
            LOGGER.debug("Changed %s (%s -> %s)", item.id, known, listed)
            result.changed.append(item)
        else:
            result.unchanged.append(item)
    return result
