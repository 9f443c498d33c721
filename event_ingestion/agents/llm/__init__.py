"""LLM clients used for remote classification."""

from .base_llm_client import BaseLLMClient, LLMUnavailableError
from .provider_router import get_llm_client

__all__ = ["BaseLLMClient", "LLMUnavailableError", "get_llm_client"]
