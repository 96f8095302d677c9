"""HTTP client for the Stortinget open data export API.

Implements the listing, detail and attachment interfaces on top of one
``httpx.Client``. Responses are XML and are converted to plain nested
dicts before parsing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin
from xml.etree import ElementTree

import httpx

from pollstore.config import DEFAULT_API_BASE, DEFAULT_SITE_BASE
from pollstore.errors import DetailFetchFailure, ListingFailure
from pollstore.models import ListingItem
from pollstore.sync.parsing import parse_listing_item

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
XSI_NIL = "{http://www.w3.org/2001/XMLSchema-instance}nil"
ENVELOPE_URL_FIELDS = ("pdf_url", "fil_url")


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def element_to_dict(element: ElementTree.Element) -> Any:
    """Convert an element to nested dicts; repeated tags become lists.

    Leaf elements become their stripped text, ``i:nil="true"`` elements
    become ``None``.
    """
    if element.get(XSI_NIL) == "true":
        return None
    children = list(element)
    if not children:
        return (element.text or "").strip()
    result: Dict[str, Any] = {}
    for child in children:
        key = _local(child.tag)
        value = element_to_dict(child)
        if key in result:
            existing = result[key]
            if not isinstance(existing, list):
                result[key] = existing = [existing]
            existing.append(value)
        else:
            result[key] = value
    return result


def parse_xml(text: str | bytes) -> Dict[str, Any]:
    root = ElementTree.fromstring(text)
    return {_local(root.tag): element_to_dict(root)}


def _is_envelope(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "").lower()
    return "xml" in content_type or "json" in content_type


def _is_binary(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "").lower()
    return "pdf" in content_type or response.content[:5] == b"%PDF-"


def _envelope_target(response: httpx.Response) -> Optional[str]:
    """Location of the real binary named by an XML or JSON envelope."""
    try:
        if "json" in response.headers.get("content-type", "").lower():
            data = response.json()
        else:
            data = parse_xml(response.content)
    except (ValueError, ElementTree.ParseError) as exc:
        LOGGER.debug("Unreadable envelope from %s: %s", response.request.url, exc)
        return None
    stack = [data]
    while stack:
        node = stack.pop()
        if isinstance(node, dict):
            for key, value in node.items():
                if key.lower() in ENVELOPE_URL_FIELDS and isinstance(value, str) and value.strip():
                    return value.strip()
                stack.append(value)
        elif isinstance(node, list):
            stack.extend(node)
    return None


class StortingetClient:
    """Listing, detail and attachment source backed by data.stortinget.no."""

    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        *,
        site_base: str = DEFAULT_SITE_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.site_base = site_base.rstrip("/")
        self._client = httpx.Client(
            base_url=self.api_base,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "StortingetClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def fetch_listing(self) -> List[ListingItem]:
        try:
            resp = self._client.get("/saker")
            resp.raise_for_status()
            data = parse_xml(resp.content)
        except httpx.HTTPError as exc:
            raise ListingFailure(f"Listing request failed: {exc}") from exc
        except ElementTree.ParseError as exc:
            raise ListingFailure(f"Listing is not valid XML: {exc}") from exc

        overview = data.get("saker_oversikt")
        if not isinstance(overview, dict):
            raise ListingFailure("Listing has no saker_oversikt root")
        cases = overview.get("saker_liste")
        cases = cases.get("sak") if isinstance(cases, dict) else None
        if cases is None:
            return []
        if not isinstance(cases, list):
            cases = [cases]
        fallback = overview.get("respons_dato_tid")
        items = []
        for raw in cases:
            if isinstance(raw, dict) and fallback and not raw.get("respons_dato_tid"):
                raw = {**raw, "respons_dato_tid": fallback}
            item = parse_listing_item(raw)
            if item is not None:
                items.append(item)
        return items

    def fetch_detail(self, item_id: str) -> Dict[str, Any]:
        try:
            resp = self._client.get("/sak", params={"sakid": item_id})
            resp.raise_for_status()
            return parse_xml(resp.content)
        except httpx.TimeoutException as exc:
            raise DetailFetchFailure(item_id, f"timeout: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise DetailFetchFailure(item_id, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise DetailFetchFailure(item_id, str(exc)) from exc
        except ElementTree.ParseError as exc:
            raise DetailFetchFailure(item_id, f"invalid XML: {exc}") from exc

    def _get(self, url: str) -> Optional[httpx.Response]:
        try:
            resp = self._client.get(url, headers={"Accept": "application/pdf, application/xml, */*"})
        except httpx.TimeoutException:
            LOGGER.warning("Timeout fetching %s", url)
            return None
        except httpx.HTTPError as exc:
            LOGGER.warning("Error fetching %s: %s", url, exc)
            return None
        if resp.is_error:
            LOGGER.warning("Failed to fetch %s: %s", url, resp.status_code)
            return None
        return resp

    def fetch_attachment(self, attachment_id: str) -> Optional[bytes]:
        """Download a publication, following at most one envelope hop."""
        resp = self._get(f"/publikasjon/{attachment_id}")
        if resp is None:
            return None
        if _is_binary(resp):
            return resp.content
        if not _is_envelope(resp):
            LOGGER.warning(
                "Unexpected content type for %s: %s",
                attachment_id,
                resp.headers.get("content-type"),
            )
            return None

        target = _envelope_target(resp)
        if target is None:
            LOGGER.warning("Envelope for %s names no file location", attachment_id)
            return None
        resp = self._get(urljoin(self.site_base + "/", target))
        if resp is None:
            return None
        if _is_binary(resp):
            return resp.content
        LOGGER.warning("Attachment %s points to another envelope, giving up", attachment_id)
        return None
