"""Exception hierarchy for the ingestion engine."""

CANCELLED_MESSAGE = "Process cancelled by user"


class IngestionError(Exception):
    """Base class for all ingestion errors."""


class SourceFetchError(IngestionError):
    """The adapter could not retrieve data from its source at all."""

    def __init__(self, source: str, message: str):
        super().__init__(message)
        self.source = source


class RecordProcessingError(IngestionError):
    """One record failed somewhere in the per-record chain."""

    def __init__(self, record_name: str, stage: str, cause: Exception):
        super().__init__(str(cause))
        self.record_name = record_name
        self.stage = stage
        self.cause = cause

    def as_log_entry(self) -> str:
        return f"Error importing {self.record_name}: {self}"


class RunCancelledError(IngestionError):
    """Operator-requested stop. Never classified as a failure."""

    def __init__(self, message: str = CANCELLED_MESSAGE):
        super().__init__(message)


class RunTimeoutError(IngestionError):
    """The per-source wall-clock budget expired."""

    def __init__(self, budget_seconds: float):
        super().__init__(f"Run exceeded time budget of {budget_seconds:g}s")
        self.budget_seconds = budget_seconds


class ProgressTransitionError(IngestionError):
    """A progress entry would move the run state machine backwards."""


class UnknownSourceError(IngestionError, KeyError):
    """A source filter names a source that is not configured."""

    def __init__(self, names):
        self.names = sorted(names)
        super().__init__(f"Unknown sources: {', '.join(self.names)}")

    def __str__(self) -> str:
        return self.args[0]


class UnknownAdapterError(IngestionError, KeyError):
    """A source references an adapter that is not registered."""

    def __init__(self, adapter: str):
        self.adapter = adapter
        super().__init__(f"No adapter registered under '{adapter}'")

    def __str__(self) -> str:
        return self.args[0]


class DuplicateEventIdError(IngestionError, ValueError):
    """An insert raced another writer for the same event_id."""

    def __init__(self, event_id: str):
        super().__init__(f"event_id '{event_id}' already exists")
        self.event_id = event_id
