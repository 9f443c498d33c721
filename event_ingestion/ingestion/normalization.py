"""
Text and date normalization shared by the pipeline stages.

All comparisons in deduplication and organizer matching run on the output of
these helpers, so case, whitespace and punctuation variance never matters.
"""

import re
from datetime import UTC, datetime
from difflib import SequenceMatcher

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\såäö]")
_SLUG_INVALID = re.compile(r"[^a-z0-9]+")
_TIME = re.compile(r"(\d{1,2})[:.](\d{2})")
_SWEDISH_DATE = re.compile(r"(\d{1,2})\s+([a-zåäö]+)\.?\s+(\d{4})")

EVENT_NAME_STOPWORDS = (
    "med",
    "och",
    "i",
    "på",
    "till",
    "från",
    "live",
    "konsert",
    "show",
    "presenterar",
)
VENUE_NAME_STOPWORDS = ("i", "på", "varberg", "sweden", "sverige")

SWEDISH_MONTHS = {
    "jan": 1, "januari": 1,
    "feb": 2, "februari": 2,
    "mar": 3, "mars": 3,
    "apr": 4, "april": 4,
    "maj": 5,
    "jun": 6, "juni": 6,
    "jul": 7, "juli": 7,
    "aug": 8, "augusti": 8,
    "sep": 9, "sept": 9, "september": 9,
    "okt": 10, "oktober": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}  # fmt: skip

SLUG_MAX_LENGTH = 80


def normalize_text(value: str | None) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip().lower()


def _strip_words(text: str, stopwords: tuple[str, ...]) -> str:
    words = [w for w in text.split(" ") if w and w not in stopwords]
    return " ".join(words)


def normalize_event_name(name: str | None) -> str:
    """
    Comparable form of an event title.

    "Kent - LIVE i Varberg!" and "kent live  i varberg" normalize the same:
    punctuation removed, whitespace collapsed, filler words dropped.
    """
    text = _NON_WORD.sub("", normalize_text(name))
    return _strip_words(_WHITESPACE.sub(" ", text).strip(), EVENT_NAME_STOPWORDS)


def normalize_venue_name(name: str | None) -> str:
    """Comparable form of a venue or organizer name used for fuzzy matching."""
    text = _NON_WORD.sub("", normalize_text(name))
    return _strip_words(_WHITESPACE.sub(" ", text).strip(), VENUE_NAME_STOPWORDS)


def normalize_phone(phone: str | None) -> str:
    if not phone:
        return ""
    return re.sub(r"[\s\-()]", "", phone)


def venue_keyword(venue: str | None) -> str:
    """
    First word of the venue before any comma or dash.

    "Arena Varberg, Getterövägen 2" -> "Arena"
    """
    if not venue:
        return ""
    head = re.split(r"[,\-]", venue, maxsplit=1)[0].strip()
    return head.split(" ")[0] if head else ""


def similarity(a: str, b: str) -> float:
    """Similarity ratio of two already-normalized strings."""
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def parse_event_datetime(value: str | None) -> datetime:
    """
    Parse the date notation adapters hand over into an aware datetime.

    Accepts ISO-8601 ("2026-02-28T19:00:00+01:00", "2026-02-28 19:00") and
    Swedish listing notation ("28 feb 2026 19:00", "lör 28 februari 2026 kl. 19.30").
    Naive values are taken as UTC.

    Raises:
        ValueError: if the text matches none of the supported notations
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("missing date")

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = _parse_swedish(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_swedish(text: str) -> datetime:
    lowered = text.lower()
    match = _SWEDISH_DATE.search(lowered)
    if not match:
        raise ValueError(f"Unrecognized date format: '{text}'")

    day, month_name, year = match.groups()
    month = SWEDISH_MONTHS.get(month_name)
    if month is None:
        raise ValueError(f"Unknown month '{month_name}' in '{text}'")

    hour = minute = 0
    time_match = _TIME.search(lowered[match.end():]) or _TIME.search(lowered)
    if time_match:
        hour, minute = int(time_match.group(1)), int(time_match.group(2))
    return datetime(int(year), month, int(day), hour, minute)


def slugify(text: str | None) -> str:
    """URL-safe slug: å/ä -> a, ö -> o, everything else non-alphanumeric -> '-'."""
    slug = (text or "").lower()
    slug = slug.replace("å", "a").replace("ä", "a").replace("ö", "o")
    slug = _SLUG_INVALID.sub("-", slug).strip("-")
    return slug[:SLUG_MAX_LENGTH].rstrip("-")
