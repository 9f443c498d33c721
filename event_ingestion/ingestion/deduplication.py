"""
Duplicate detection against persisted events and the current batch.

Matchers are tried in order of confidence, the first hit wins:
- UrlMatcher: same organizer event URL (confidence 1.0)
- ExactKeyMatcher: same normalized name, date and venue
- FuzzyNameMatcher: same date, venue keyword match, name similarity >= threshold
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, date

from event_ingestion.ingestion.normalization import (
    normalize_event_name,
    normalize_text,
    parse_event_datetime,
    similarity,
    venue_keyword,
)
from event_ingestion.schemas import CanonicalEvent, DuplicateRecord, RawEvent
from event_ingestion.storage.base import EventStore

logger = logging.getLogger(__name__)

FUZZY_NAME_THRESHOLD = 0.85


@dataclass(frozen=True)
class Candidate:
    """A raw record reduced to the fields used for matching."""

    raw: RawEvent
    day: date
    name_key: str
    venue_key: str
    venue_keyword: str

    @classmethod
    def from_raw(cls, raw: RawEvent) -> "Candidate":
        return cls(
            raw=raw,
            day=parse_event_datetime(raw.date_time).astimezone(UTC).date(),
            name_key=normalize_event_name(raw.name),
            venue_key=normalize_text(raw.display_venue),
            venue_keyword=venue_keyword(raw.display_venue),
        )

    @property
    def batch_key(self) -> str:
        return f"{self.name_key}|{self.day.isoformat()}|{self.venue_key}"


@dataclass(frozen=True)
class DuplicateMatch:
    """Why a candidate was judged a duplicate."""

    match_type: str
    similarity: float
    existing: CanonicalEvent | None = None


class DuplicateMatcher(ABC):
    """One way of recognising an already-imported event."""

    match_type: str

    @abstractmethod
    def match(self, candidate: Candidate, store: EventStore) -> DuplicateMatch | None: ...


class UrlMatcher(DuplicateMatcher):
    match_type = "url"

    def match(self, candidate: Candidate, store: EventStore) -> DuplicateMatch | None:
        url = candidate.raw.external_url
        if not url:
            return None
        existing = store.find_event_by_url(url)
        if existing is None:
            return None
        return DuplicateMatch(self.match_type, 1.0, existing)


class ExactKeyMatcher(DuplicateMatcher):
    """Composite key: normalized name + date + venue."""

    match_type = "exact"

    def match(self, candidate: Candidate, store: EventStore) -> DuplicateMatch | None:
        for existing in store.find_events_on_date(candidate.day):
            if (
                normalize_event_name(existing.name) == candidate.name_key
                and normalize_text(existing.venue_name or existing.location)
                == candidate.venue_key
            ):
                return DuplicateMatch(self.match_type, 1.0, existing)
        return None


class FuzzyNameMatcher(DuplicateMatcher):
    """
    Near-identical titles on the same day at the same venue.

    Catches "Kent - Live!" vs "KENT live" style variants. Without a venue
    keyword no fuzzy comparison is attempted.
    """

    match_type = "fuzzy_name"

    def __init__(self, threshold: float = FUZZY_NAME_THRESHOLD):
        self.threshold = threshold

    def match(self, candidate: Candidate, store: EventStore) -> DuplicateMatch | None:
        if not candidate.venue_keyword or not candidate.name_key:
            return None
        best: DuplicateMatch | None = None
        for existing in store.find_events_on_date(candidate.day, candidate.venue_keyword):
            ratio = similarity(candidate.name_key, normalize_event_name(existing.name))
            if ratio >= self.threshold and (best is None or ratio > best.similarity):
                best = DuplicateMatch(self.match_type, round(ratio, 4), existing)
        return best


class Deduplicator:
    """
    Decides whether a raw record already exists as a canonical event.

    Read-only against the store. Keys of records imported in the current batch
    are remembered through `mark_imported`, so repeats are caught even when the
    store does not yet show the new row.
    Every detected duplicate is queued as a DuplicateRecord; `drain_records`
    hands them to the caller for persistence.
    """

    def __init__(self, store: EventStore, matchers: list[DuplicateMatcher] | None = None):
        self.store = store
        self.matchers = matchers or [UrlMatcher(), ExactKeyMatcher(), FuzzyNameMatcher()]
        self._seen_keys: set[str] = set()
        self._seen_urls: set[str] = set()
        self._records: list[DuplicateRecord] = []

    def reset(self) -> None:
        """Forget the current batch."""
        self._seen_keys.clear()
        self._seen_urls.clear()
        self._records.clear()

    def find_match(self, raw: RawEvent) -> DuplicateMatch | None:
        """
        Return the first matching duplicate, or None for a new event.

        Raises:
            ValueError: if the record's date cannot be parsed
        """
        candidate = Candidate.from_raw(raw)

        if candidate.batch_key in self._seen_keys or (
            raw.external_url and raw.external_url in self._seen_urls
        ):
            return DuplicateMatch("batch", 1.0)

        for matcher in self.matchers:
            match = matcher.match(candidate, self.store)
            if match:
                return match
        return None

    def mark_imported(self, raw: RawEvent) -> None:
        """Remember a persisted record so later repeats in the batch are skipped."""
        self._seen_keys.add(Candidate.from_raw(raw).batch_key)
        if raw.external_url:
            self._seen_urls.add(raw.external_url)

    def is_duplicate(self, raw: RawEvent, source: str) -> bool:
        match = self.find_match(raw)
        if match is None:
            return False

        if match.existing is not None:
            logger.info(
                f"Duplicate ({match.match_type}, {match.similarity:.0%}): "
                f"'{raw.name}' matches '{match.existing.name}'"
            )
            self._records.append(
                DuplicateRecord(
                    scraper_name=source,
                    scraped_event_name=raw.name,
                    scraped_event_url=raw.external_url,
                    existing_event_id=match.existing.event_id,
                    existing_event_name=match.existing.name,
                    existing_event_url=match.existing.organizer_event_url,
                    similarity_score=match.similarity,
                    match_type=match.match_type,
                )
            )
        else:
            logger.debug(f"Duplicate within batch: '{raw.name}'")
        return True

    def drain_records(self) -> list[DuplicateRecord]:
        records, self._records = self._records, []
        return records
