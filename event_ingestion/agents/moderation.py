"""
Content moderation via the OpenAI moderation endpoint.

A moderation failure is never fatal: the text is treated as safe and the
failure is logged.
"""

import logging
from dataclasses import dataclass, field

from openai import AsyncOpenAI

from event_ingestion.configs.settings import get_settings

logger = logging.getLogger(__name__)

MODERATION_MODEL = "omni-moderation-latest"


@dataclass
class ModerationResult:
    flagged: bool = False
    categories: list[str] = field(default_factory=list)
    checked: bool = False


class ContentModerator:
    """Flags inappropriate event text before it can auto-publish."""

    def __init__(self, api_key: str | None = None, model: str = MODERATION_MODEL):
        if api_key is None:
            settings = get_settings()
            api_key = (
                settings.OPENAI_API_KEY.get_secret_value()
                if settings.OPENAI_API_KEY
                else None
            )
        self._api_key = api_key
        self.model = model
        self._client: AsyncOpenAI | None = None

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> AsyncOpenAI | None:
        if self._client is None and self._api_key:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def check(self, text: str) -> ModerationResult:
        client = self._get_client()
        if client is None or not text.strip():
            return ModerationResult()
        try:
            response = await client.moderations.create(model=self.model, input=text)
        except Exception as e:
            logger.warning(f"Moderation failed, treating content as safe: {e}")
            return ModerationResult()

        result = response.results[0]
        flagged_categories = [
            name for name, hit in result.categories.model_dump().items() if hit
        ]
        return ModerationResult(
            flagged=bool(result.flagged),
            categories=flagged_categories,
            checked=True,
        )
