"""Storage interface consumed by the ingestion engine."""

from abc import ABC, abstractmethod
from datetime import date

from event_ingestion.schemas import (
    CanonicalEvent,
    DuplicateRecord,
    Organizer,
    ProgressEntry,
    PublishDecision,
    RunLog,
    RunStatus,
)


class EventStore(ABC):
    """
    Persistence boundary for events, organizers and run bookkeeping.

    Methods are synchronous; the orchestrator calls them between suspension
    points. Event and organizer writes are insert-only so concurrent edits by
    the admin UI on existing rows are never overwritten.
    """

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @abstractmethod
    def event_id_exists(self, event_id: str) -> bool: ...

    @abstractmethod
    def find_event_by_url(self, url: str) -> CanonicalEvent | None: ...

    @abstractmethod
    def find_events_on_date(
        self, day: date, venue_keyword: str | None = None
    ) -> list[CanonicalEvent]:
        """Events on `day` (UTC) whose venue contains `venue_keyword`, case-insensitively."""

    @abstractmethod
    def insert_event(self, event: CanonicalEvent) -> CanonicalEvent:
        """Insert and return the event with its storage id set."""

    @abstractmethod
    def get_event(self, event_id: str) -> CanonicalEvent | None: ...

    @abstractmethod
    def list_events(self, source_name: str | None = None) -> list[CanonicalEvent]: ...

    # ------------------------------------------------------------------
    # Organizers
    # ------------------------------------------------------------------

    @abstractmethod
    def list_organizers(self) -> list[Organizer]: ...

    @abstractmethod
    def get_organizer(self, organizer_id: int) -> Organizer | None: ...

    @abstractmethod
    def find_organizer_by_contact(
        self, email: str | None = None, phone: str | None = None
    ) -> Organizer | None: ...

    @abstractmethod
    def create_organizer(self, organizer: Organizer) -> Organizer: ...

    # ------------------------------------------------------------------
    # Run logs & progress
    # ------------------------------------------------------------------

    @abstractmethod
    def create_run_log(self, log: RunLog) -> RunLog: ...

    @abstractmethod
    def finalize_run_log(self, log: RunLog) -> bool:
        """
        Write the terminal state of `log`.

        Only a row still `running` is updated. Returns False when the row
        was already terminal, which makes the transition exactly-once.
        """

    @abstractmethod
    def get_run_log(self, log_id: int) -> RunLog | None: ...

    @abstractmethod
    def list_run_logs(self, status: RunStatus | None = None) -> list[RunLog]: ...

    @abstractmethod
    def update_run_counts(self, log: RunLog) -> None:
        """Write the counters and errors of `log` onto its row, whatever its status."""

    @abstractmethod
    def append_progress(self, entry: ProgressEntry) -> ProgressEntry | None:
        """
        Append one entry and return it with its id set.

        Returns None once the run has a `completed` or `failed` entry; nothing
        is stored after the terminal entry.
        """

    @abstractmethod
    def list_progress(self, log_id: int) -> list[ProgressEntry]:
        """Entries of one run in creation order."""

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    @abstractmethod
    def record_duplicates(self, records: list[DuplicateRecord]) -> None: ...

    @abstractmethod
    def record_publish_decision(self, decision: PublishDecision) -> None: ...

    def close(self) -> None:
        """Release held resources."""
