"""
Interface shared by the remote classification clients.

Only structured completions are needed: the categorizer asks for a
CategorizationOutput and gets a validated model back or an exception.
Subclasses supply the SDK client and the single request; key lookup, lazy
construction and token bookkeeping live here.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel, SecretStr

from event_ingestion.configs.settings import Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class LLMUnavailableError(RuntimeError):
    """Raised when a structured call is made without a usable client."""


class BaseLLMClient(ABC):
    """
    Async client returning Pydantic-validated answers.

    Every failure surfaces as an exception; the categorizer recovers from all
    of them by keeping its heuristic result.
    """

    provider: str = "base"
    default_model: str = ""

    def __init__(
        self,
        model_name: str | None = None,
        api_key: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 300,
    ):
        self.model_name = model_name or self.default_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        # An explicit empty string disables the client even if settings carry a key.
        self._api_key = api_key if api_key is not None else self._key_from(get_settings())
        self._client: Any = None
        self._last_usage: dict[str, int] = {"prompt_tokens": 0, "completion_tokens": 0, "total": 0}

    @staticmethod
    def _secret(value: SecretStr | None) -> str | None:
        return value.get_secret_value() if value else None

    @abstractmethod
    def _key_from(self, settings: Settings) -> str | None:
        """The provider's API key as configured in settings."""

    @abstractmethod
    def _build_client(self, api_key: str) -> Any:
        """Construct the provider SDK client."""

    @abstractmethod
    async def _request(
        self,
        client: Any,
        system_prompt: str,
        user_prompt: str,
        output_schema: type[T],
        temperature: float,
        max_tokens: int,
    ) -> tuple[T, dict[str, int] | None]:
        """Send one request; return the parsed answer and token usage if reported."""

    @property
    def is_available(self) -> bool:
        """False when the provider has no API key configured."""
        return bool(self._api_key)

    async def complete_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        output_schema: type[T],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> T:
        """Answer `user_prompt` as an instance of `output_schema`."""
        if not self.is_available:
            raise LLMUnavailableError(f"{self.provider} API key is not configured")
        if self._client is None:
            self._client = self._build_client(self._api_key)

        result, usage = await self._request(
            self._client,
            system_prompt,
            user_prompt,
            output_schema,
            self.temperature if temperature is None else temperature,
            max_tokens or self.max_tokens,
        )
        if usage is not None:
            self._last_usage = usage
            logger.debug(f"{self.provider} call used {usage['total']} tokens")
        return result

    def get_token_usage(self) -> dict[str, int]:
        """Token counts of the last call: prompt_tokens, completion_tokens, total."""
        return dict(self._last_usage)
