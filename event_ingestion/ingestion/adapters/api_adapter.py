"""
JSON feed adapter.

Fetches a JSON endpoint and maps each item onto a RawEvent with a dotted
field map.

Options (SourceConfig.options):
    items_path: Dotted path to the list of items ("" when the body is the list)
    total_path: Dotted path to the total item count, if the feed reports one
    field_map: RawEvent field -> dotted path in an item. Organizer hints use
               organizer_name, organizer_email, organizer_phone.
    max_events: Cap on mapped items
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

from event_ingestion.ingestion.adapters.base_adapter import SourceAdapter, register_adapter
from event_ingestion.ingestion.errors import SourceFetchError
from event_ingestion.schemas import OrganizerHints, RawEvent

logger = logging.getLogger(__name__)

DEFAULT_FIELD_MAP = {
    "name": "name",
    "date_time": "startDate",
    "location": "location",
    "venue_name": "venue",
    "description": "description",
    "image_url": "image",
    "external_url": "url",
    "price": "price",
}

_ORGANIZER_FIELDS = {
    "organizer_name": "organizer_name",
    "organizer_email": "email",
    "organizer_phone": "phone",
}


def get_path(data: Any, path: str | None) -> Any:
    """Resolve "a.b.0.c" against nested dicts and lists. Missing keys yield None."""
    if not path:
        return data
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is None:
            return None
    return current


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


@register_adapter("json_feed")
class JsonFeedAdapter(SourceAdapter):
    """Maps a JSON list endpoint onto RawEvent records."""

    def map_item(self, item: dict[str, Any]) -> RawEvent | None:
        field_map = {**DEFAULT_FIELD_MAP, **self.options.get("field_map", {})}
        values = {
            field: _text(get_path(item, path))
            for field, path in field_map.items()
            if field not in _ORGANIZER_FIELDS
        }
        if not values.get("name") or not values.get("date_time"):
            return None

        organizer_values = {
            target: _text(get_path(item, field_map[field]))
            for field, target in _ORGANIZER_FIELDS.items()
            if field in field_map
        }
        hints = None
        if any(organizer_values.values()):
            hints = OrganizerHints(venue_name=values.get("venue_name"), **organizer_values)

        hint = _text(get_path(item, field_map.get("category", "category")))
        return RawEvent(
            **{k: v for k, v in values.items() if k in RawEvent.model_fields},
            category_hints=[hint] if hint else [],
            organizer=hints,
        )

    async def produce(self) -> AsyncIterator[RawEvent]:
        response = await self.fetch_entry(self.config.url)
        try:
            body = response.json()
        except ValueError as e:
            raise SourceFetchError(self.source_name, f"Invalid JSON from {self.config.url}: {e}") from e

        items = get_path(body, self.options.get("items_path", ""))
        if not isinstance(items, list):
            raise SourceFetchError(
                self.source_name,
                f"No item list at '{self.options.get('items_path', '')}' in {self.config.url}",
            )

        max_events = self.options.get("max_events")
        if max_events:
            items = items[: int(max_events)]

        total = get_path(body, self.options.get("total_path")) if self.options.get("total_path") else None
        self.total_hint = min(int(total), len(items)) if isinstance(total, int) else len(items)
        self.logger.info(f"{self.source_name}: feed returned {len(items)} items")

        for item in items:
            if not isinstance(item, dict):
                continue
            record = self.map_item(item)
            if record is None:
                self.logger.warning(f"{self.source_name}: item without name or date skipped")
                continue
            yield record
