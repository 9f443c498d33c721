"""
Event schemas for the ingestion engine.

RawEvent is what a source adapter yields: source-native, loosely typed and
never persisted as-is. CanonicalEvent is the normalized, persisted record that
the admin UI edits afterwards.

The category taxonomy is a flat, ordered list. Declaration order doubles as
the tie-break priority when two categories receive the same confidence score.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


# ============================================================================
# ENUMS
# ============================================================================


class EventStatus(str, Enum):
    """Publication status of a canonical event."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class EventCategory(str, Enum):
    """
    Event categories shown on the public site.

    Members are declared in taxonomy priority order; `priority` is the
    tie-break rank used to keep category ordering deterministic.
    """

    SCEN = "Scen"
    NATTLIV = "Nattliv"
    SPORT = "Sport"
    UTSTALLNINGAR = "Utställningar"
    KONST = "Konst"
    FORELASNINGAR = "Föreläsningar"
    BARN_OCH_FAMILJ = "Barn & Familj"
    MAT_OCH_DRYCK = "Mat & Dryck"
    JUL = "Jul"
    FILM_OCH_BIO = "Film & bio"
    DJUR_OCH_NATUR = "Djur & Natur"
    GUIDADE_VISNINGAR = "Guidade visningar"
    MARKNADER = "Marknader"
    OKATEGORISERAD = "Okategoriserad"

    @property
    def priority(self) -> int:
        """Lower value wins ties."""
        return CATEGORY_PRIORITY.index(self)

    @classmethod
    def parse(cls, value: str) -> "EventCategory | None":
        """Return the category matching `value` case-insensitively, or None."""
        needle = (value or "").strip().lower()
        for member in cls:
            if member.value.lower() == needle:
                return member
        return None


CATEGORY_PRIORITY: list[EventCategory] = list(EventCategory)
UNCATEGORIZED = EventCategory.OKATEGORISERAD
MAX_CATEGORIES = 3


def rank_categories(
    scores: dict[EventCategory, float],
) -> list[EventCategory]:
    """Order categories by descending score, ties broken by taxonomy priority."""
    return sorted(scores, key=lambda cat: (-scores[cat], cat.priority))


def _check_category_invariant(
    categories: list[EventCategory],
    scores: dict[EventCategory, float],
) -> None:
    if not categories:
        raise ValueError("categories must contain at least one category")
    if len(categories) > MAX_CATEGORIES:
        raise ValueError(f"at most {MAX_CATEGORIES} categories are allowed")
    if len(set(categories)) != len(categories):
        raise ValueError("categories must be unique")
    if set(scores) != set(categories):
        raise ValueError("category_scores keys must equal categories")
    for score in scores.values():
        if not 0.0 <= score <= 1.0:
            raise ValueError(f"category score {score} outside [0.0, 1.0]")
    if rank_categories(scores) != list(categories):
        raise ValueError("categories must be ordered by descending score")


# ============================================================================
# RAW (SOURCE-NATIVE) RECORDS
# ============================================================================


class OrganizerHints(BaseModel):
    """Organizer identification metadata found on aggregator listings."""

    organizer_name: str | None = None
    venue_name: str | None = None
    email: str | None = None
    phone: str | None = None


class RawEvent(BaseModel):
    """
    A single event listing as produced by a source adapter.

    `date_time` is kept as text: adapters may hand over ISO strings or the
    site's own date notation, normalization happens in the pipeline.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str
    date_time: str
    location: str | None = None
    venue_name: str | None = None
    description: str | None = None
    image_url: str | None = None
    external_url: str | None = None
    price: str | None = None
    category_hints: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    organizer: OrganizerHints | None = None

    @property
    def display_venue(self) -> str:
        """Venue name when known, otherwise the free-text location."""
        return self.venue_name or self.location or ""


# ============================================================================
# CATEGORIZATION
# ============================================================================


class CategorizationResult(BaseModel):
    """1-3 ranked categories with a confidence score for each."""

    categories: list[EventCategory]
    scores: dict[EventCategory, float]
    method: str = "heuristic"

    @model_validator(mode="after")
    def _validate_ranking(self) -> "CategorizationResult":
        _check_category_invariant(self.categories, self.scores)
        return self

    @classmethod
    def uncategorized(cls, method: str = "fallback") -> "CategorizationResult":
        """The fallback result used when nothing confident is available."""
        return cls(
            categories=[UNCATEGORIZED],
            scores={UNCATEGORIZED: 1.0},
            method=method,
        )

    @classmethod
    def from_scores(
        cls,
        scores: dict[EventCategory, float],
        method: str = "heuristic",
    ) -> "CategorizationResult":
        """Rank, truncate to three and build a result. Empty input falls back."""
        if not scores:
            return cls.uncategorized(method=method)
        clamped = {cat: round(min(max(s, 0.0), 1.0), 4) for cat, s in scores.items()}
        ranked = rank_categories(clamped)[:MAX_CATEGORIES]
        return cls(
            categories=ranked,
            scores={cat: clamped[cat] for cat in ranked},
            method=method,
        )

    @property
    def primary(self) -> EventCategory:
        return self.categories[0]

    @property
    def is_uncategorized(self) -> bool:
        return self.categories == [UNCATEGORIZED]


# ============================================================================
# CANONICAL EVENT
# ============================================================================


class CanonicalEvent(BaseModel):
    """Normalized, deduplicated, persisted representation of an event."""

    id: int | None = None
    event_id: str
    name: str
    description: str | None = None
    description_format: str = "markdown"
    date_time: datetime
    location: str | None = None
    venue_name: str | None = None
    price: str | None = None
    image_url: str | None = None
    organizer_event_url: str | None = None
    source_name: str

    organizer_id: int | None = None

    categories: list[EventCategory]
    category_scores: dict[EventCategory, float]

    quality_score: int = Field(default=0, ge=0, le=100)
    quality_issues: list[str] = Field(default_factory=list)
    status: EventStatus = EventStatus.DRAFT
    auto_published: bool = False
    featured: bool = False

    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)

    @model_validator(mode="after")
    def _validate_categories(self) -> "CanonicalEvent":
        _check_category_invariant(self.categories, self.category_scores)
        if self.auto_published and self.status != EventStatus.PUBLISHED:
            raise ValueError("auto_published events must have status 'published'")
        return self


# ============================================================================
# AUDIT RECORDS
# ============================================================================


class DuplicateRecord(BaseModel):
    """A skipped record and the canonical event it was matched against."""

    scraper_name: str
    scraped_event_name: str
    scraped_event_url: str | None = None
    existing_event_id: str | None = None
    existing_event_name: str | None = None
    existing_event_url: str | None = None
    similarity_score: float
    match_type: str
    scraped_at: datetime = Field(default_factory=_utc_now)


class PublishDecision(BaseModel):
    """Audit entry for the quality scorer's status decision."""

    event_id: str
    source_name: str
    organizer_id: int | None = None
    score: int
    issues: list[str] = Field(default_factory=list)
    decision: EventStatus
    auto_published: bool = False
    decided_at: datetime = Field(default_factory=_utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)
