"""Tolerant mapping from loosely structured source payloads to records.

Payloads arrive as nested dicts (from XML or JSON) whose shape varies
between API versions: list containers may hold one child or many, names
may be plain strings or objects with a ``navn`` field, and the same concept
shows up under several field names. Nothing here raises on an odd shape;
unknown or missing values leave the field unset.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from pollstore.config import DEFAULT_SITE_BASE
from pollstore.models import AttachmentRef, CaseStep, ListingItem, Proposer, Record

LOGGER = logging.getLogger(__name__)

REVISION_FIELDS = ("sist_oppdatert_dato", "respons_dato_tid")
DETAIL_ROOTS = ("detaljert_sak", "sak")
NET_DATE = re.compile(r"/Date\((-?\d+)([+-]\d{4})?\)/")

TOPIC_KEYWORDS = (
    ("statsbudsjett", "Statsbudsjettet"),
    ("budsjett", "Statsbudsjettet"),
    ("finans", "Finanser"),
    ("skatt", "Skatter"),
    ("drosje", "Samferdsel"),
    ("taxi", "Samferdsel"),
    ("transport", "Samferdsel"),
    ("rullestol", "Funksjonshemmede"),
    ("innvandr", "Innvandrere"),
    ("flyktning", "Innvandrere"),
    ("ukraina", "Utenrikssaker"),
    ("ekomlov", "Kommunikasjonsteknologi"),
    ("telekom", "Kommunikasjonsteknologi"),
    ("kommunikasjon", "Kommunikasjonsteknologi"),
    ("sekundærbosett", "Innvandrere"),
    ("bosett", "Innvandrere"),
)


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _name(value: Any) -> Optional[str]:
    """A name given either as a string or as an object with ``navn``."""
    if isinstance(value, Mapping):
        return _text(value.get("navn"))
    return _text(value)


def _first(data: Mapping[str, Any], *keys: str, reader=_text) -> Optional[str]:
    for key in keys:
        value = reader(data.get(key))
        if value:
            return value
    return None


def _items(data: Mapping[str, Any], container: str, child: str) -> List[Dict[str, Any]]:
    """Children of ``data[container][child]`` as a list, whatever the shape."""
    holder = data.get(container)
    if isinstance(holder, Mapping):
        holder = holder.get(child)
    if holder is None:
        return []
    if not isinstance(holder, list):
        holder = [holder]
    return [item for item in holder if isinstance(item, Mapping)]


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO 8601 or .NET ``/Date(ms+zzzz)/`` values; naive results are UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = _text(value)
        if text is None:
            return None
        match = NET_DATE.fullmatch(text)
        if match:
            parsed = datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
            offset = match.group(2)
            if offset:
                sign = 1 if offset[0] == "+" else -1
                delta = timedelta(hours=int(offset[1:3]), minutes=int(offset[3:5]))
                parsed = parsed.astimezone(timezone(sign * delta))
            return parsed
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # Python < 3.11 only accepts 3 or 6 fractional digits
        text = re.sub(r"\.(\d{1,6})\d*", lambda m: "." + m.group(1).ljust(6, "0"), text, count=1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_listing_item(raw: Mapping[str, Any]) -> Optional[ListingItem]:
    """Map one listing entry to a candidate, or ``None`` when it has no id."""
    if not isinstance(raw, Mapping):
        return None
    item_id = _text(raw.get("id"))
    if item_id is None:
        LOGGER.debug("Listing entry without id ignored")
        return None
    revision = _first(raw, *REVISION_FIELDS)
    return ListingItem(
        id=item_id,
        revision=revision,
        date=parse_datetime(revision),
        payload=dict(raw),
    )


def detail_root(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Unwrap ``detaljert_sak``/``sak`` roots; an unwrapped payload is returned as is."""
    if not isinstance(payload, Mapping):
        return {}
    for root in DETAIL_ROOTS:
        value = payload.get(root)
        if isinstance(value, Mapping):
            return dict(value)
    return dict(payload)


def _department(data: Mapping[str, Any]) -> Optional[str]:
    return _first(data, "departement", "fra", "fra_departement", reader=_name)


def _committee(detail: Mapping[str, Any]) -> Optional[str]:
    committee = _name(detail.get("komite"))
    if committee:
        return committee
    names = [_name(item) for item in _items(detail, "komite_liste", "komite")]
    return ", ".join(name for name in names if name) or None


def _steps(detail: Mapping[str, Any], committee: Optional[str]) -> List[CaseStep]:
    process = detail.get("saksgang")
    if isinstance(process, Mapping):
        return [
            CaseStep(
                name=_first(step, "navn", "id") or "",
                date=_text(step.get("dato")) or "",
                committee=_name(step.get("komite")) or committee or "",
                description=_first(step, "beskrivelse", "tekst") or "",
            )
            for step in _items(process, "saksgang_steg_liste", "saksgang_steg")
        ]
    return [
        CaseStep(
            name=_first(step, "steg", "type", "navn") or "",
            date=_text(step.get("dato")) or "",
            committee=_name(step.get("komite")) or "",
            description=_first(step, "beskrivelse", "tekst") or "",
        )
        for step in _items(detail, "saksgang_liste", "saksgang")
    ]


def _attachments(detail: Mapping[str, Any]) -> List[AttachmentRef]:
    refs = []
    for item in _items(detail, "publikasjon_referanse_liste", "publikasjon_referanse"):
        refs.append(
            AttachmentRef(
                id=_text(item.get("eksport_id")),
                title=_text(item.get("lenke_tekst")) or "",
                url=_text(item.get("lenke_url")) or "",
                kind=_text(item.get("type")) or "",
                subkind=_text(item.get("undertype")),
            )
        )
    return refs


def _proposers(data: Mapping[str, Any]) -> List[Proposer]:
    proposers = []
    for rep in _items(data, "forslagstiller_liste", "representant"):
        party = rep.get("parti") if isinstance(rep.get("parti"), Mapping) else {}
        proposers.append(
            Proposer(
                id=_text(rep.get("id")) or "",
                first_name=_text(rep.get("fornavn")) or "",
                last_name=_text(rep.get("etternavn")) or "",
                party_id=_text(party.get("id")),
                party_name=_text(party.get("navn")),
            )
        )
    return proposers


def _topic(data: Mapping[str, Any], *titles: Optional[str]) -> Optional[str]:
    for subject in _items(data, "emne_liste", "emne"):
        name = _text(subject.get("navn"))
        if name:
            return name
    haystack = " ".join(t for t in titles if t).lower()
    for keyword, topic in TOPIC_KEYWORDS:
        if keyword in haystack:
            return topic
    return None


def _joined(items: List[Dict[str, Any]], *keys: str) -> Optional[str]:
    texts = [_first(item, *keys) for item in items]
    return "\n\n".join(t for t in texts if t) or None


def parse_record(
    item_id: str,
    payload: Mapping[str, Any],
    listing: Optional[ListingItem] = None,
    *,
    retrieved_at: Optional[datetime] = None,
    site_base: str = DEFAULT_SITE_BASE,
) -> Record:
    """Build a canonical record from a detail payload and its listing entry."""
    retrieved_at = retrieved_at or datetime.now(timezone.utc)
    detail = detail_root(payload)
    summary: Mapping[str, Any] = listing.payload if listing is not None else {}
    merged = {**summary, **{k: v for k, v in detail.items() if v is not None}}

    revision = (listing.revision if listing is not None else None) or _first(
        merged, *REVISION_FIELDS
    )
    date = (
        (listing.date if listing is not None else None)
        or parse_datetime(_first(merged, *REVISION_FIELDS))
        or retrieved_at
    )

    title = _first(merged, "tittel", "korttittel")
    short_title = _text(merged.get("korttittel"))
    committee = _committee(merged)
    steps = _steps(detail, committee)

    department = _department(summary) or _department(detail)
    if not department:
        for first_step in _items(detail, "saksgang_liste", "saksgang")[:1]:
            department = _department(first_step)

    recommendation = _text(detail.get("innstillingstekst"))
    parts = [
        _text(detail.get("innhold")),
        _text(detail.get("beskrivelse")),
    ]
    grounds = _joined(_items(detail, "grunnlag_liste", "grunnlag"), "tekst", "tittel")
    if grounds:
        parts.append(f"Grunnlag: {grounds}")
    minutes = _joined(_items(detail, "referat_liste", "referat"), "tekst", "innhold")
    if minutes:
        parts.append(f"Referat: {minutes}")
    if recommendation:
        parts.append(f"Innstilling: {recommendation}")
    body = "\n\n".join(p for p in parts if p) or _first(merged, "henvisning", "korttittel")

    return Record(
        id=item_id,
        revision=revision,
        date=date,
        retrieved_at=retrieved_at,
        title=title,
        short_title=short_title,
        body=body,
        reference=_text(merged.get("henvisning")),
        status=_first(merged, "status", "status_beskrivelse"),
        committee=committee,
        department=department,
        topic=_topic(merged, title, short_title),
        url=f"{site_base.rstrip('/')}/no/Saker-og-publikasjoner/Saker/Sak/?p={item_id}",
        document_group=_text(merged.get("dokumentgruppe")),
        recommendation=recommendation,
        attachments=_attachments(detail),
        proposers=_proposers(merged),
        steps=steps,
    )
