"""
Configuration-driven HTML listing adapter.

Reads a listing page, follows the detail links it finds and extracts one or
more events per detail page, either from schema.org JSON-LD or from CSS
selectors configured per source.

Options (SourceConfig.options):
    link_selector: CSS selector of detail-page links on the listing page
    link_contains: Only follow links whose URL contains this text
    fields: field -> CSS selector; "selector@attr" reads an attribute
            (name, date, time, venue_name, description, image_url, price,
            organizer_name)
    prefer_json_ld: Try JSON-LD Event blocks before the selectors
    default_venue / default_location: Fallbacks for pages without them
    max_events: Cap on followed detail links
    request_delay_seconds: Pause between detail requests
"""

import json
import re
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from event_ingestion.ingestion.adapters.base_adapter import SourceAdapter, register_adapter
from event_ingestion.schemas import OrganizerHints, RawEvent

_ATTR_SELECTOR = re.compile(r"^(.*\S)@([\w:-]+)$")


def _collapse_ws(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def select_value(node: Tag, selector: str, base_url: str | None = None) -> str | None:
    """
    Text (or attribute, with "selector@attr") of the first match of `selector`.

    URL-valued attributes (src, href) are made absolute against `base_url`.
    """
    match = _ATTR_SELECTOR.match(selector)
    if match:
        css, attr = match.groups()
        found = node.select_one(css)
        value = found.get(attr) if found else None
        if isinstance(value, list):
            value = " ".join(value)
        if value and base_url and attr in ("src", "href", "data-src"):
            value = urljoin(base_url, value)
        return value.strip() if value else None

    found = node.select_one(selector)
    if found is None:
        return None
    text = found.get_text("\n", strip=True)
    return text or None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _strip_html(text: str | None) -> str | None:
    if not text:
        return None
    return BeautifulSoup(text, "html.parser").get_text("\n", strip=True) or None


def extract_json_ld_events(soup: BeautifulSoup) -> list[dict[str, Any]]:
    """All schema.org *Event nodes embedded as JSON-LD."""
    nodes: list[dict[str, Any]] = []
    for script in soup.select('script[type="application/ld+json"]'):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            continue
        stack = _as_list(data)
        while stack:
            item = stack.pop(0)
            if not isinstance(item, dict):
                continue
            stack.extend(_as_list(item.get("@graph")))
            types = [str(t) for t in _as_list(item.get("@type"))]
            if any(t.endswith("Event") for t in types):
                nodes.append(item)
    return nodes


def json_ld_to_raw(node: dict[str, Any], page_url: str) -> RawEvent | None:
    """Map one schema.org Event node onto a RawEvent."""
    name = _collapse_ws(node.get("name") or "")
    start = node.get("startDate")
    if not name or not start:
        return None

    location = next(iter(_as_list(node.get("location"))), None)
    venue_name = address = None
    if isinstance(location, dict):
        venue_name = location.get("name")
        addr = location.get("address")
        if isinstance(addr, dict):
            parts = [addr.get("streetAddress"), addr.get("postalCode"), addr.get("addressLocality")]
            address = ", ".join(p for p in parts if p) or None
        elif isinstance(addr, str):
            address = addr
    elif isinstance(location, str):
        venue_name = location

    image = next(iter(_as_list(node.get("image"))), None)
    if isinstance(image, dict):
        image = image.get("url")

    price = None
    if node.get("isAccessibleForFree") is True:
        price = "Gratis"
    else:
        offer = next(iter(_as_list(node.get("offers"))), None)
        if isinstance(offer, dict) and offer.get("price") not in (None, ""):
            price = f"{offer['price']} {offer.get('priceCurrency', '')}".strip()

    organizer = next(iter(_as_list(node.get("organizer"))), None)
    hints = None
    if isinstance(organizer, dict) or venue_name:
        org = organizer if isinstance(organizer, dict) else {}
        hints = OrganizerHints(
            organizer_name=org.get("name"),
            venue_name=venue_name,
            email=org.get("email"),
            phone=org.get("telephone"),
        )

    return RawEvent(
        name=name,
        date_time=str(start),
        venue_name=venue_name,
        location=address or venue_name,
        description=_strip_html(node.get("description")),
        image_url=urljoin(page_url, image) if isinstance(image, str) else None,
        external_url=page_url,
        price=price,
        organizer=hints,
    )


@register_adapter("html_listing")
class HtmlListingAdapter(SourceAdapter):
    """Listing page -> detail pages -> RawEvent records."""

    def _detail_links(self, soup: BeautifulSoup, base_url: str) -> list[str]:
        selector = self.options.get("link_selector", "a[href]")
        contains = self.options.get("link_contains")
        links: list[str] = []
        for anchor in soup.select(selector):
            href = anchor.get("href")
            if not href:
                continue
            url = urljoin(base_url, href)
            if contains and contains not in url:
                continue
            if url not in links:
                links.append(url)
        max_events = self.options.get("max_events")
        return links[: int(max_events)] if max_events else links

    def parse_detail(self, html: str, url: str) -> list[RawEvent]:
        """Events found on one detail page; empty when required fields are missing."""
        soup = BeautifulSoup(html, "html.parser")

        if self.options.get("prefer_json_ld"):
            records = [r for r in (json_ld_to_raw(n, url) for n in extract_json_ld_events(soup)) if r]
            if records:
                return [self._with_defaults(r) for r in records]

        fields: dict[str, str] = self.options.get("fields", {})
        values = {key: select_value(soup, sel, url) for key, sel in fields.items()}

        name = _collapse_ws(values.get("name") or "")
        date_text = _collapse_ws(" ".join(v for v in (values.get("date"), values.get("time")) if v))
        if not name or not date_text:
            self.logger.warning(f"Missing name or date on {url}, skipping")
            return []

        hints = None
        if values.get("organizer_name"):
            hints = OrganizerHints(
                organizer_name=values["organizer_name"],
                venue_name=values.get("venue_name"),
            )

        record = RawEvent(
            name=name,
            date_time=date_text,
            venue_name=values.get("venue_name"),
            description=values.get("description"),
            image_url=values.get("image_url"),
            external_url=url,
            price=_collapse_ws(values.get("price") or "") or None,
            organizer=hints,
        )
        return [self._with_defaults(record)]

    def _with_defaults(self, record: RawEvent) -> RawEvent:
        venue = record.venue_name or self.options.get("default_venue")
        location = record.location or self.options.get("default_location") or venue
        return record.model_copy(update={"venue_name": venue, "location": location})

    async def produce(self) -> AsyncIterator[RawEvent]:
        listing = await self.fetch_entry(self.config.url)
        soup = BeautifulSoup(listing.text, "html.parser")
        links = self._detail_links(soup, str(listing.url))
        self.total_hint = len(links)
        self.logger.info(f"{self.source_name}: found {len(links)} event links")

        for url in links:
            await self.polite_delay()
            try:
                response = await self._request(url)
            except httpx.HTTPError as e:
                self.logger.warning(f"Failed to fetch {url}, skipping: {e}")
                continue
            for record in self.parse_detail(response.text, url):
                yield record
