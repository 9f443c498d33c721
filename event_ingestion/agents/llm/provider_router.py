"""Pick the LLM client class for a configured provider name."""

import logging

from event_ingestion.agents.llm.anthropic_client import AnthropicLLMClient
from event_ingestion.agents.llm.base_llm_client import BaseLLMClient
from event_ingestion.agents.llm.openai_client import OpenAILLMClient

logger = logging.getLogger(__name__)

PROVIDERS: dict[str, type[BaseLLMClient]] = {
    "openai": OpenAILLMClient,
    "anthropic": AnthropicLLMClient,
}


def get_llm_client(
    provider: str = "openai",
    model_name: str | None = None,
    temperature: float = 0.2,
    max_tokens: int = 300,
) -> BaseLLMClient:
    """
    Build the client for `provider` ("openai" or "anthropic", case-insensitive).

    Unknown names log a warning and fall back to OpenAI. The returned client
    may report ``is_available == False`` when its API key is missing.
    """
    key = provider.strip().lower()
    client_cls = PROVIDERS.get(key)
    if client_cls is None:
        logger.warning(f"Unknown LLM provider '{provider}', using openai")
        client_cls = OpenAILLMClient
    return client_cls(model_name=model_name, temperature=temperature, max_tokens=max_tokens)
