"""
Unit tests for the event schemas.

Tests for:
- EventCategory parsing and taxonomy priority
- CategorizationResult ranking invariants
- RawEvent input handling
- CanonicalEvent validation
"""

import pytest
from pydantic import ValidationError

from event_ingestion.schemas import (
    CATEGORY_PRIORITY,
    MAX_CATEGORIES,
    UNCATEGORIZED,
    CanonicalEvent,
    CategorizationResult,
    EventCategory,
    EventStatus,
    RawEvent,
    rank_categories,
)

C = EventCategory


class TestEventCategory:
    """Tests for the EventCategory enum."""

    def test_parse_is_case_insensitive(self):
        assert EventCategory.parse("scen") == C.SCEN
        assert EventCategory.parse("  BARN & FAMILJ ") == C.BARN_OCH_FAMILJ

    def test_parse_unknown_returns_none(self):
        assert EventCategory.parse("Konserter") is None
        assert EventCategory.parse("") is None

    def test_priority_follows_declaration_order(self):
        assert C.SCEN.priority == 0
        assert C.SCEN.priority < C.KONST.priority < C.MARKNADER.priority
        assert CATEGORY_PRIORITY[-1] == UNCATEGORIZED


class TestRankCategories:
    """Tests for rank_categories()."""

    def test_descending_score(self):
        ranked = rank_categories({C.KONST: 0.4, C.SCEN: 0.9, C.JUL: 0.6})
        assert ranked == [C.SCEN, C.JUL, C.KONST]

    def test_ties_broken_by_priority(self):
        """Equal scores keep taxonomy order, whatever the insertion order."""
        ranked = rank_categories({C.MARKNADER: 0.7, C.KONST: 0.7, C.SCEN: 0.7})
        assert ranked == [C.SCEN, C.KONST, C.MARKNADER]


class TestCategorizationResult:
    """Tests for CategorizationResult."""

    def test_uncategorized_fallback(self):
        result = CategorizationResult.uncategorized()
        assert result.categories == [UNCATEGORIZED]
        assert result.scores == {UNCATEGORIZED: 1.0}
        assert result.is_uncategorized

    def test_from_scores_truncates_to_three(self):
        result = CategorizationResult.from_scores(
            {C.SCEN: 0.9, C.KONST: 0.8, C.JUL: 0.7, C.SPORT: 0.6}
        )
        assert len(result.categories) == MAX_CATEGORIES
        assert C.SPORT not in result.categories
        assert set(result.scores) == set(result.categories)

    def test_from_scores_clamps(self):
        result = CategorizationResult.from_scores({C.SCEN: 1.7, C.KONST: -0.2})
        assert result.scores[C.SCEN] == 1.0
        assert result.scores[C.KONST] == 0.0
        assert result.primary == C.SCEN

    def test_from_empty_scores_falls_back(self):
        result = CategorizationResult.from_scores({}, method="llm")
        assert result.is_uncategorized
        assert result.method == "llm"

    def test_rejects_empty_categories(self):
        with pytest.raises(ValidationError):
            CategorizationResult(categories=[], scores={})

    def test_rejects_unordered_categories(self):
        with pytest.raises(ValidationError):
            CategorizationResult(categories=[C.KONST, C.SCEN], scores={C.KONST: 0.5, C.SCEN: 0.9})

    def test_rejects_score_key_mismatch(self):
        with pytest.raises(ValidationError):
            CategorizationResult(categories=[C.SCEN], scores={C.KONST: 0.9})

    def test_rejects_out_of_range_score(self):
        with pytest.raises(ValidationError):
            CategorizationResult(categories=[C.SCEN], scores={C.SCEN: 1.5})


class TestRawEvent:
    """Tests for RawEvent."""

    def test_strips_whitespace_and_ignores_unknown_fields(self):
        raw = RawEvent(name="  Kent  ", date_time="2026-03-01T19:00", ticket_vendor="x")
        assert raw.name == "Kent"
        assert not hasattr(raw, "ticket_vendor")

    def test_display_venue_prefers_venue_name(self):
        raw = RawEvent(name="Kent", date_time="x", venue_name="Arena", location="Getterön")
        assert raw.display_venue == "Arena"
        assert RawEvent(name="Kent", date_time="x", location="Getterön").display_venue == "Getterön"
        assert RawEvent(name="Kent", date_time="x").display_venue == ""


class TestCanonicalEvent:
    """Tests for CanonicalEvent validation."""

    def test_valid_event(self, create_canonical_event):
        event = create_canonical_event()
        assert event.status == EventStatus.DRAFT
        assert event.categories == [C.SCEN]

    def test_requires_categories(self, create_canonical_event):
        with pytest.raises(ValidationError):
            create_canonical_event(categories=[], category_scores={})

    def test_rejects_more_than_three_categories(self, create_canonical_event):
        scores = {C.SCEN: 0.9, C.KONST: 0.8, C.JUL: 0.7, C.SPORT: 0.6}
        with pytest.raises(ValidationError):
            create_canonical_event(categories=list(scores), category_scores=scores)

    def test_auto_published_requires_published_status(self, create_canonical_event):
        with pytest.raises(ValidationError):
            create_canonical_event(auto_published=True, status=EventStatus.PENDING_APPROVAL)
        event = create_canonical_event(auto_published=True, status=EventStatus.PUBLISHED)
        assert event.auto_published

    def test_quality_score_bounds(self, create_canonical_event):
        with pytest.raises(ValidationError):
            create_canonical_event(quality_score=101)

    def test_model_copy_keeps_type(self, create_canonical_event):
        event = create_canonical_event()
        assert isinstance(event.model_copy(update={"event_id": "x"}), CanonicalEvent)
