"""Core pollstore data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are read as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(slots=True)
class AttachmentRef:
    """Reference from a record to a downloadable publication."""

    id: Optional[str] = None
    title: str = ""
    url: str = ""
    kind: str = ""
    subkind: Optional[str] = None


@dataclass(slots=True)
class Proposer:
    id: str = ""
    first_name: str = ""
    last_name: str = ""
    party_id: Optional[str] = None
    party_name: Optional[str] = None


@dataclass(slots=True)
class CaseStep:
    name: str = ""
    date: str = ""
    committee: str = ""
    description: str = ""


@dataclass(slots=True)
class ListingItem:
    """One candidate from a poll: id, revision marker and nominal date.

    ``payload`` keeps the raw listing entry so the detail parser can fall
    back to listing-level fields the detail payload omits.
    """

    id: str
    revision: Optional[str]
    date: Optional[datetime]
    payload: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        self.date = _aware(self.date)


@dataclass(slots=True)
class Record:
    """A fully detail-fetched item."""

    id: str
    revision: Optional[str]
    date: datetime
    retrieved_at: datetime
    title: Optional[str] = None
    short_title: Optional[str] = None
    body: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[str] = None
    committee: Optional[str] = None
    department: Optional[str] = None
    topic: Optional[str] = None
    url: Optional[str] = None
    document_group: Optional[str] = None
    recommendation: Optional[str] = None
    attachments: List[AttachmentRef] = field(default_factory=list)
    proposers: List[Proposer] = field(default_factory=list)
    steps: List[CaseStep] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.date = _aware(self.date)
        self.retrieved_at = _aware(self.retrieved_at)

    def attachment_ids(self) -> List[str]:
        return [ref.id for ref in self.attachments if ref.id]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        data["retrieved_at"] = self.retrieved_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        values = dict(data)
        values["date"] = _dt(values["date"])
        values["retrieved_at"] = _dt(values["retrieved_at"])
        values["attachments"] = [AttachmentRef(**item) for item in values.get("attachments") or []]
        values["proposers"] = [Proposer(**item) for item in values.get("proposers") or []]
        values["steps"] = [CaseStep(**item) for item in values.get("steps") or []]
        return cls(**values)


@dataclass(slots=True, frozen=True)
class Chunk:
    """Span of extracted attachment text."""

    attachment_id: str
    index: int
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"attachment_id": self.attachment_id, "index": self.index, "text": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            attachment_id=str(data["attachment_id"]),
            index=int(data["index"]),
            text=str(data["text"]),
        )


@dataclass(slots=True)
class Artifact:
    """Immutable chunk list computed for one attachment."""

    attachment_id: str
    chunks: List[Chunk]
    target_size: int
    overlap: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attachment_id": self.attachment_id,
            "chunks": [chunk.to_dict() for chunk in self.chunks],
            "target_size": self.target_size,
            "overlap": self.overlap,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Artifact":
        return cls(
            attachment_id=str(data["attachment_id"]),
            chunks=[Chunk.from_dict(item) for item in data.get("chunks") or []],
            target_size=int(data.get("target_size", 0)),
            overlap=int(data.get("overlap", 0)),
            created_at=_dt(data["created_at"]),
        )
