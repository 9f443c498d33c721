"""Unit tests for ContentModerator."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from event_ingestion.agents.moderation import ContentModerator


def _moderation_response(flagged: bool, **categories):
    result = SimpleNamespace(
        flagged=flagged,
        categories=MagicMock(model_dump=MagicMock(return_value=categories)),
    )
    return SimpleNamespace(results=[result])


class TestContentModerator:
    def test_unavailable_without_key(self):
        moderator = ContentModerator(api_key="")
        assert not moderator.is_available
        result = asyncio.run(moderator.check("Kent live"))
        assert not result.flagged
        assert not result.checked

    def test_flagged_categories(self):
        moderator = ContentModerator(api_key="sk-test")
        client = MagicMock()
        client.moderations.create = AsyncMock(
            return_value=_moderation_response(True, violence=True, harassment=False)
        )
        moderator._client = client

        result = asyncio.run(moderator.check("Något otrevligt"))

        assert result.flagged
        assert result.checked
        assert result.categories == ["violence"]

    def test_failure_is_treated_as_safe(self):
        moderator = ContentModerator(api_key="sk-test")
        client = MagicMock()
        client.moderations.create = AsyncMock(side_effect=RuntimeError("503"))
        moderator._client = client

        result = asyncio.run(moderator.check("Kent live"))

        assert not result.flagged
        assert not result.checked

    def test_blank_text_is_not_sent(self):
        moderator = ContentModerator(api_key="sk-test")
        client = MagicMock()
        client.moderations.create = AsyncMock()
        moderator._client = client
        asyncio.run(moderator.check("   "))
        client.moderations.create.assert_not_called()
