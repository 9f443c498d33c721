"""
Quality scoring and the publish decision.

Scoring starts at 100 and deducts fixed weights per issue. The decision then
follows the configured thresholds:

    score >= PUBLISH_THRESHOLD, organizer resolved, no blocking issue -> published
    score <  DRAFT_THRESHOLD                                          -> draft
    otherwise                                                         -> pending_approval

Blocking issues are the ones a human must look at regardless of score:
uncategorized events, flagged content and organizers still pending review.
Every decision is written to the audit logger and persisted.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from event_ingestion.agents.moderation import ContentModerator, ModerationResult
from event_ingestion.configs.settings import Settings
from event_ingestion.ingestion.errors import RunCancelledError
from event_ingestion.monitoring.logging import AUDIT_LOGGER
from event_ingestion.schemas import UNCATEGORIZED, CanonicalEvent, EventStatus, PublishDecision
from event_ingestion.storage.base import EventStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger(AUDIT_LOGGER)

MIN_TITLE_LENGTH = 5
MIN_DESCRIPTION_LENGTH = 50
MIN_VENUE_LENGTH = 3
MAX_FUTURE_DAYS = 730

PENALTIES = {
    "short_title": 30,
    "missing_description": 30,
    "short_description": 20,
    "past_date": 15,
    "far_future_date": 15,
    "missing_image": 25,
    "missing_venue": 10,
    "flagged_content": 50,
    "uncategorized": 30,
    "unresolved_organizer": 20,
}

ISSUE_MESSAGES = {
    "short_title": "Title missing or too short",
    "missing_description": "Description missing",
    "short_description": f"Description too short (min {MIN_DESCRIPTION_LENGTH} characters)",
    "past_date": "Event date is in the past",
    "far_future_date": "Event date is implausibly far in the future",
    "missing_image": "Image missing",
    "missing_venue": "Venue missing or too short",
    "flagged_content": "Content flagged by moderation",
    "uncategorized": "Could not be categorized automatically",
    "unresolved_organizer": "Organizer could not be resolved",
    "pending_organizer": "Organizer is pending review",
}

BLOCKING_ISSUES = frozenset({"uncategorized", "flagged_content", "pending_organizer"})


@dataclass
class QualityAssessment:
    """Score, issues and the resulting publish decision for one event."""

    score: int
    issue_codes: list[str] = field(default_factory=list)
    decision: EventStatus = EventStatus.DRAFT
    auto_published: bool = False
    moderation: ModerationResult | None = None

    @property
    def issues(self) -> list[str]:
        messages = [ISSUE_MESSAGES[code] for code in self.issue_codes]
        if self.moderation and self.moderation.categories:
            messages.append(f"Moderation categories: {', '.join(self.moderation.categories)}")
        return messages

    @property
    def blocking(self) -> list[str]:
        return [code for code in self.issue_codes if code in BLOCKING_ISSUES]


class QualityScorer:
    """
    Computes the 0-100 quality score and decides the publication status.

    Args:
        publish_threshold: Minimum score for auto-publishing
        draft_threshold: Scores below this stay draft
        moderator: Optional content moderation client
    """

    def __init__(
        self,
        publish_threshold: int = 80,
        draft_threshold: int = 50,
        moderator: ContentModerator | None = None,
    ):
        if draft_threshold > publish_threshold:
            raise ValueError("draft_threshold must not exceed publish_threshold")
        self.publish_threshold = publish_threshold
        self.draft_threshold = draft_threshold
        self.moderator = moderator

    @classmethod
    def from_settings(
        cls, settings: Settings, moderator: ContentModerator | None = None
    ) -> "QualityScorer":
        return cls(
            publish_threshold=settings.PUBLISH_THRESHOLD,
            draft_threshold=settings.DRAFT_THRESHOLD,
            moderator=moderator,
        )

    def score(
        self,
        event: CanonicalEvent,
        organizer_pending: bool = False,
        moderation: ModerationResult | None = None,
        now: datetime | None = None,
    ) -> QualityAssessment:
        """
        Score a partially-built event and decide its status.

        Args:
            event: Event with content, categories and organizer filled in
            organizer_pending: The resolved organizer still awaits review
            moderation: Moderation outcome, None when moderation was skipped
            now: Reference time for date plausibility checks

        Returns:
            QualityAssessment
        """
        now = now or datetime.now(UTC)
        codes: list[str] = []

        if len((event.name or "").strip()) < MIN_TITLE_LENGTH:
            codes.append("short_title")

        description = (event.description or "").strip()
        if not description:
            codes.append("missing_description")
        elif len(description) < MIN_DESCRIPTION_LENGTH:
            codes.append("short_description")

        if event.date_time < now:
            codes.append("past_date")
        elif event.date_time > now + timedelta(days=MAX_FUTURE_DAYS):
            codes.append("far_future_date")

        if not event.image_url:
            codes.append("missing_image")

        if len((event.venue_name or "").strip()) < MIN_VENUE_LENGTH:
            codes.append("missing_venue")

        if moderation and moderation.flagged:
            codes.append("flagged_content")

        if event.categories == [UNCATEGORIZED]:
            codes.append("uncategorized")

        if event.organizer_id is None:
            codes.append("unresolved_organizer")
        elif organizer_pending:
            codes.append("pending_organizer")

        score = max(0, 100 - sum(PENALTIES.get(code, 0) for code in codes))
        assessment = QualityAssessment(score=score, issue_codes=codes, moderation=moderation)
        assessment.decision, assessment.auto_published = self.decide(
            score, event.organizer_id is not None, assessment.blocking
        )
        return assessment

    def decide(
        self, score: int, organizer_resolved: bool, blocking: list[str]
    ) -> tuple[EventStatus, bool]:
        if score >= self.publish_threshold and organizer_resolved and not blocking:
            return EventStatus.PUBLISHED, True
        if score < self.draft_threshold:
            return EventStatus.DRAFT, False
        return EventStatus.PENDING_APPROVAL, False

    async def assess(
        self,
        event: CanonicalEvent,
        trusted: bool = False,
        organizer_pending: bool = False,
        guard: Callable[[Awaitable], Awaitable] | None = None,
    ) -> QualityAssessment:
        """
        Moderate (unless the source is trusted) and score.

        Raises:
            RunCancelledError: if `guard` observes cancellation
        """
        moderation = None
        if self.moderator is not None and self.moderator.is_available and not trusted:
            call = self.moderator.check(f"{event.name}\n\n{event.description or ''}")
            try:
                moderation = await (guard(call) if guard else call)
            except RunCancelledError:
                raise
            except Exception as e:
                logger.warning(f"Moderation failed for '{event.name}', treating as safe: {e}")
        return self.score(event, organizer_pending=organizer_pending, moderation=moderation)


def record_decision(
    store: EventStore, event: CanonicalEvent, assessment: QualityAssessment
) -> PublishDecision:
    """Write the publish decision to the audit log and the store."""
    decision = PublishDecision(
        event_id=event.event_id,
        source_name=event.source_name,
        organizer_id=event.organizer_id,
        score=assessment.score,
        issues=assessment.issues,
        decision=assessment.decision,
        auto_published=assessment.auto_published,
        metadata={"blocking": assessment.blocking},
    )
    audit_logger.info(
        f"Publish decision for '{event.event_id}': {decision.decision.value} "
        f"(score {decision.score}, issues: {decision.issues or 'none'})",
        extra={"payload": decision.model_dump(mode="json")},
    )
    store.record_publish_decision(decision)
    return decision
