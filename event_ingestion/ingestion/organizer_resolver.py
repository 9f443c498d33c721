"""
Organizer resolution for raw event records.

Matching cascade, first hit wins:
1. exact   - organizer name hint equals an organizer's name or alternative name
2. venue   - venue text equals an organizer's venue or name
3. contact - email, or phone with formatting stripped
4. fuzzy   - venue/organizer text similarity >= 0.80 against venues and names
5. created - an unmatched name hint creates a pending organizer for review
6. default - the organizer the source is bound to

All comparisons are case-insensitive and whitespace-normalized.
"""

import logging
import threading
from dataclasses import dataclass

from event_ingestion.ingestion.normalization import (
    normalize_text,
    normalize_venue_name,
    similarity,
)
from event_ingestion.schemas import Organizer, OrganizerStatus, RawEvent
from event_ingestion.storage.base import EventStore

logger = logging.getLogger(__name__)

FUZZY_ORGANIZER_THRESHOLD = 0.80


@dataclass(frozen=True)
class OrganizerResolution:
    """
    Outcome of resolving one record.

    Attributes:
        organizer_id: Resolved organizer, None when nothing could be resolved
        created: True when this call created the organizer
        match_type: exact | venue | contact | fuzzy | created | default | none
        confidence: 0.0-1.0
        pending: The organizer still awaits human confirmation
    """

    organizer_id: int | None
    created: bool = False
    match_type: str = "none"
    confidence: float = 0.0
    pending: bool = False

    @property
    def resolved(self) -> bool:
        return self.organizer_id is not None


UNRESOLVED = OrganizerResolution(organizer_id=None)


class OrganizerResolver:
    """
    Maps a record's organizer/venue text to an organizer id.

    Matching is stable: once a name has resolved, the same normalized text
    resolves to the same id for the lifetime of the resolver, and organizers
    it created are visible to later lookups through the store.
    """

    def __init__(self, store: EventStore, fuzzy_threshold: float = FUZZY_ORGANIZER_THRESHOLD):
        self.store = store
        self.fuzzy_threshold = fuzzy_threshold
        self._cache: dict[str, OrganizerResolution] = {}
        self._lock = threading.Lock()

    def resolve(
        self,
        raw: RawEvent,
        source: str,
        default_organizer_id: int | None = None,
        match_organizers: bool = True,
    ) -> OrganizerResolution:
        """
        Resolve the organizer of `raw`.

        Args:
            raw: Record carrying organizer hints and venue text
            source: Source name, stored on organizers created here
            default_organizer_id: Organizer the source is bound to
            match_organizers: False for single-organizer sources; the bound
                organizer is used without matching

        Returns:
            OrganizerResolution
        """
        if not match_organizers and default_organizer_id is not None:
            return self._default(default_organizer_id)

        hints = raw.organizer
        organizer_name = hints.organizer_name if hints else None
        venue = (hints.venue_name if hints else None) or raw.venue_name
        email = hints.email if hints else None
        phone = hints.phone if hints else None

        key = normalize_text(organizer_name or venue)
        with self._lock:
            if key and key in self._cache:
                return self._cache[key]

            resolution = self._match(organizer_name, venue, email, phone)
            if resolution is None and key:
                resolution = self._create(organizer_name or venue, venue, email, phone, source)
            if resolution is None:
                if default_organizer_id is not None:
                    return self._default(default_organizer_id)
                return UNRESOLVED

            if key:
                self._cache[key] = OrganizerResolution(
                    organizer_id=resolution.organizer_id,
                    match_type=resolution.match_type,
                    confidence=resolution.confidence,
                    pending=resolution.pending,
                )
        if resolution.match_type != "default":
            logger.info(
                f"Organizer match for '{raw.name}': ID {resolution.organizer_id} "
                f"({resolution.match_type}, {resolution.confidence:.0%} confidence)"
            )
        return resolution

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def _match(
        self,
        organizer_name: str | None,
        venue: str | None,
        email: str | None,
        phone: str | None,
    ) -> OrganizerResolution | None:
        organizers = self.store.list_organizers()

        if organizer_name:
            needle = normalize_text(organizer_name)
            for org in organizers:
                if needle in {normalize_text(n) for n in org.match_names}:
                    return self._matched(org, "exact", 1.0)

        if venue:
            needle = normalize_text(venue)
            for org in organizers:
                candidates = {normalize_text(org.venue_name), *map(normalize_text, org.match_names)}
                if needle in candidates:
                    return self._matched(org, "venue", 0.9)

        if email or phone:
            org = self.store.find_organizer_by_contact(email=email, phone=phone)
            if org is not None:
                return self._matched(org, "contact", 0.95)

        text = normalize_venue_name(venue or organizer_name)
        if text:
            best: tuple[float, Organizer] | None = None
            for org in organizers:
                for name in (org.venue_name, *org.match_names):
                    score = similarity(text, normalize_venue_name(name))
                    if score >= self.fuzzy_threshold and (best is None or score > best[0]):
                        best = (score, org)
            if best is not None:
                return self._matched(best[1], "fuzzy", round(best[0], 4))

        return None

    def _matched(self, org: Organizer, match_type: str, confidence: float) -> OrganizerResolution:
        return OrganizerResolution(
            organizer_id=org.id,
            match_type=match_type,
            confidence=confidence,
            pending=org.status == OrganizerStatus.PENDING,
        )

    def _create(
        self,
        name: str,
        venue: str | None,
        email: str | None,
        phone: str | None,
        source: str,
    ) -> OrganizerResolution:
        organizer = self.store.create_organizer(
            Organizer.auto_created(
                name=" ".join(name.split()),
                source=source,
                venue_name=venue,
                email=email,
                phone=phone,
            )
        )
        logger.info(
            f"Created pending organizer '{organizer.name}' (ID {organizer.id}) from {source}"
        )
        return OrganizerResolution(
            organizer_id=organizer.id,
            created=True,
            match_type="created",
            confidence=1.0,
            pending=True,
        )

    def _default(self, organizer_id: int) -> OrganizerResolution:
        organizer = self.store.get_organizer(organizer_id)
        return OrganizerResolution(
            organizer_id=organizer_id,
            match_type="default",
            confidence=0.5,
            pending=organizer is not None and organizer.status == OrganizerStatus.PENDING,
        )
