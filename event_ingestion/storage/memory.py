"""In-process store used by default and throughout the test-suite."""

import itertools
import logging
import threading
from datetime import UTC, date

from event_ingestion.ingestion.errors import DuplicateEventIdError
from event_ingestion.ingestion.normalization import normalize_phone, normalize_text
from event_ingestion.schemas import (
    CanonicalEvent,
    DuplicateRecord,
    Organizer,
    ProgressEntry,
    PublishDecision,
    RunLog,
    RunStatus,
)
from event_ingestion.storage.base import EventStore

logger = logging.getLogger(__name__)


class InMemoryEventStore(EventStore):
    """Thread-safe dictionary-backed EventStore. Returned models are copies."""

    def __init__(self, organizers: list[Organizer] | None = None):
        self._lock = threading.RLock()
        self._ids = {
            "events": itertools.count(1),
            "logs": itertools.count(1),
            "progress": itertools.count(1),
        }
        self._next_organizer_id = 1
        self.events: dict[str, CanonicalEvent] = {}
        self.organizers: dict[int, Organizer] = {}
        self.run_logs: dict[int, RunLog] = {}
        self.progress: dict[int, list[ProgressEntry]] = {}
        self.duplicates: list[DuplicateRecord] = []
        self.publish_decisions: list[PublishDecision] = []
        for organizer in organizers or []:
            self._add_organizer(organizer)

    def _add_organizer(self, organizer: Organizer) -> Organizer:
        if organizer.id is None:
            organizer = organizer.model_copy(update={"id": self._next_organizer_id})
        self._next_organizer_id = max(self._next_organizer_id, organizer.id + 1)
        self.organizers[organizer.id] = organizer
        return organizer

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def event_id_exists(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self.events

    def find_event_by_url(self, url: str) -> CanonicalEvent | None:
        with self._lock:
            for event in self.events.values():
                if url and event.organizer_event_url == url:
                    return event.model_copy()
        return None

    def find_events_on_date(
        self, day: date, venue_keyword: str | None = None
    ) -> list[CanonicalEvent]:
        needle = normalize_text(venue_keyword)
        with self._lock:
            return [
                event.model_copy()
                for event in self.events.values()
                if event.date_time.astimezone(UTC).date() == day
                and needle in normalize_text(event.venue_name or event.location)
            ]

    def insert_event(self, event: CanonicalEvent) -> CanonicalEvent:
        with self._lock:
            if event.event_id in self.events:
                raise DuplicateEventIdError(event.event_id)
            stored = event.model_copy(update={"id": next(self._ids["events"])})
            self.events[stored.event_id] = stored
            return stored.model_copy()

    def get_event(self, event_id: str) -> CanonicalEvent | None:
        with self._lock:
            event = self.events.get(event_id)
            return event.model_copy() if event else None

    def list_events(self, source_name: str | None = None) -> list[CanonicalEvent]:
        with self._lock:
            return [
                e.model_copy()
                for e in self.events.values()
                if source_name is None or e.source_name == source_name
            ]

    # ------------------------------------------------------------------
    # Organizers
    # ------------------------------------------------------------------

    def list_organizers(self) -> list[Organizer]:
        with self._lock:
            return [o.model_copy() for o in self.organizers.values()]

    def get_organizer(self, organizer_id: int) -> Organizer | None:
        with self._lock:
            organizer = self.organizers.get(organizer_id)
            return organizer.model_copy() if organizer else None

    def find_organizer_by_contact(
        self, email: str | None = None, phone: str | None = None
    ) -> Organizer | None:
        email = normalize_text(email)
        phone = normalize_phone(phone)
        with self._lock:
            if email:
                for organizer in self.organizers.values():
                    if normalize_text(organizer.email) == email:
                        return organizer.model_copy()
            if phone:
                for organizer in self.organizers.values():
                    if normalize_phone(organizer.phone) == phone:
                        return organizer.model_copy()
        return None

    def create_organizer(self, organizer: Organizer) -> Organizer:
        with self._lock:
            return self._add_organizer(organizer).model_copy()

    # ------------------------------------------------------------------
    # Run logs & progress
    # ------------------------------------------------------------------

    def create_run_log(self, log: RunLog) -> RunLog:
        with self._lock:
            stored = log.model_copy(update={"id": next(self._ids["logs"])})
            self.run_logs[stored.id] = stored
            self.progress[stored.id] = []
            return stored.model_copy()

    def finalize_run_log(self, log: RunLog) -> bool:
        with self._lock:
            current = self.run_logs.get(log.id)
            if current is None or current.status != RunStatus.RUNNING:
                return False
            self.run_logs[log.id] = log.model_copy(deep=True)
            return True

    def get_run_log(self, log_id: int) -> RunLog | None:
        with self._lock:
            log = self.run_logs.get(log_id)
            return log.model_copy(deep=True) if log else None

    def list_run_logs(self, status: RunStatus | None = None) -> list[RunLog]:
        with self._lock:
            return [
                log.model_copy(deep=True)
                for log in self.run_logs.values()
                if status is None or log.status == status
            ]

    def update_run_counts(self, log: RunLog) -> None:
        with self._lock:
            current = self.run_logs.get(log.id)
            if current is None:
                return
            self.run_logs[log.id] = current.model_copy(
                update={
                    "events_found": log.events_found,
                    "events_imported": log.events_imported,
                    "duplicates_skipped": log.duplicates_skipped,
                    "errors": list(log.errors),
                }
            )

    def append_progress(self, entry: ProgressEntry) -> ProgressEntry | None:
        with self._lock:
            if entry.log_id not in self.run_logs:
                raise KeyError(f"Unknown run log {entry.log_id}")
            if any(e.step.is_terminal for e in self.progress[entry.log_id]):
                return None
            stored = entry.model_copy(update={"id": next(self._ids["progress"])})
            self.progress[entry.log_id].append(stored)
            return stored

    def list_progress(self, log_id: int) -> list[ProgressEntry]:
        with self._lock:
            return list(self.progress.get(log_id, []))

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record_duplicates(self, records: list[DuplicateRecord]) -> None:
        with self._lock:
            self.duplicates.extend(records)

    def record_publish_decision(self, decision: PublishDecision) -> None:
        with self._lock:
            self.publish_decisions.append(decision)
