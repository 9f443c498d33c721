"""
Run bookkeeping schemas.

RunLog is one row per adapter invocation (`scraper_logs`), ProgressEntry the
append-only checkpoints of a run (`scraper_progress_logs`). RunResult and
RunSummary are the control API payloads; they serialize with camelCase keys.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utc_now() -> datetime:
    return datetime.now(UTC)


class RunStatus(str, Enum):
    """Lifecycle status of a RunLog."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class TriggerType(str, Enum):
    """What started a run."""

    MANUAL = "manual"
    CRON = "cron"
    API = "api"
    SCRIPT = "script"


class TriggerInfo(BaseModel):
    """Trigger metadata stored on every RunLog of an invocation."""

    triggered_by: TriggerType = TriggerType.MANUAL
    user_email: str | None = None


class RunLog(BaseModel):
    """Durable record of one ingestion attempt for one source."""

    id: int | None = None
    scraper_name: str
    scraper_url: str | None = None
    organizer_id: int | None = None
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: datetime | None = None
    duration_ms: int | None = None
    events_found: int = 0
    events_imported: int = 0
    duplicates_skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    triggered_by: TriggerType = TriggerType.MANUAL
    trigger_user_email: str | None = None


class ProgressStep(str, Enum):
    """
    Steps of the run state machine.

    starting -> scraping -> deduplicating -> categorizing ->
    matching_organizers -> importing -> completed, and any step -> failed.
    """

    STARTING = "starting"
    SCRAPING = "scraping"
    DEDUPLICATING = "deduplicating"
    CATEGORIZING = "categorizing"
    MATCHING_ORGANIZERS = "matching_organizers"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def order(self) -> int:
        return _STEP_ORDER[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStep.COMPLETED, ProgressStep.FAILED)


_STEP_ORDER = {step: idx for idx, step in enumerate(ProgressStep)}


class ProgressEntry(BaseModel):
    """One checkpoint in a run's execution."""

    id: int | None = None
    log_id: int
    step: ProgressStep
    message: str
    progress_current: int | None = None
    progress_total: int | None = None
    estimated_time_remaining_ms: int | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# CONTROL API PAYLOADS
# ============================================================================


class CamelModel(BaseModel):
    """Serializes with camelCase aliases for the admin UI."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunResult(CamelModel):
    """Outcome of one source run."""

    source: str
    success: bool
    events_found: int = 0
    events_imported: int = 0
    duplicates_skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    log_id: int | None = None
    status: RunStatus | None = None


class RunSummary(CamelModel):
    """Aggregate over all source runs of one invocation."""

    timestamp: datetime = Field(default_factory=_utc_now)
    total_sources: int = 0
    total_found: int = 0
    total_imported: int = 0
    total_duplicates: int = 0
    results: list[RunResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[RunResult], timestamp: datetime | None = None) -> "RunSummary":
        return cls(
            timestamp=timestamp or _utc_now(),
            total_sources=len(results),
            total_found=sum(r.events_found for r in results),
            total_imported=sum(r.events_imported for r in results),
            total_duplicates=sum(r.duplicates_skipped for r in results),
            results=results,
        )


class TotalProgress(CamelModel):
    current: int
    total: int
    percentage: int


class ProgressSnapshot(CamelModel):
    """A run's progress as served to pollers."""

    scraper_log: RunLog
    progress_logs: list[ProgressEntry] = Field(default_factory=list)
    total_progress: TotalProgress | None = None
    is_running: bool = False
    estimated_time_remaining: int | None = None
