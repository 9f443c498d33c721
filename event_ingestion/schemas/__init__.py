"""Pydantic models for events, organizers and run bookkeeping."""

from .event import (
    CATEGORY_PRIORITY,
    MAX_CATEGORIES,
    UNCATEGORIZED,
    CanonicalEvent,
    CategorizationResult,
    DuplicateRecord,
    EventCategory,
    EventStatus,
    OrganizerHints,
    PublishDecision,
    RawEvent,
    rank_categories,
)
from .organizer import Organizer, OrganizerStatus
from .run import (
    CamelModel,
    ProgressEntry,
    ProgressSnapshot,
    ProgressStep,
    RunLog,
    RunResult,
    RunStatus,
    RunSummary,
    TotalProgress,
    TriggerInfo,
    TriggerType,
)

__all__ = [
    "CATEGORY_PRIORITY",
    "MAX_CATEGORIES",
    "UNCATEGORIZED",
    "CanonicalEvent",
    "CategorizationResult",
    "DuplicateRecord",
    "EventCategory",
    "EventStatus",
    "OrganizerHints",
    "PublishDecision",
    "RawEvent",
    "rank_categories",
    "Organizer",
    "OrganizerStatus",
    "ProgressEntry",
    "ProgressStep",
    "RunLog",
    "RunResult",
    "RunStatus",
    "RunSummary",
    "TriggerInfo",
    "TriggerType",
    "CamelModel",
    "ProgressSnapshot",
    "TotalProgress",
]
