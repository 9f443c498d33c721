"""Slug-based, collision-checked public identifiers for canonical events."""

import re
from collections.abc import Callable

from event_ingestion.ingestion.normalization import slugify

MAX_PLAIN_SUFFIX = 10


def generate_unique_event_id(
    name: str,
    source: str,
    exists: Callable[[str], bool],
) -> str:
    """
    Build an `event_id` from the event name that `exists` reports as free.

    Collisions get a `-1`, `-2`, ... suffix. Past ten collisions the source
    slug is prefixed as well, so busy names stay readable per source.

    Args:
        name: Event title
        source: Source name, used only after repeated collisions
        exists: Lookup telling whether an id is already taken

    Returns:
        An id for which `exists` returned False
    """
    base = slugify(name) or "event"
    candidate = base
    counter = 1
    while exists(candidate):
        if counter > MAX_PLAIN_SUFFIX:
            source_slug = re.sub(r"\s+", "-", source.lower())
            candidate = f"{source_slug}-{base}-{counter}"
        else:
            candidate = f"{base}-{counter}"
        counter += 1
    return candidate
