"""
Source adapter interface and registry.

An adapter produces a lazy, finite sequence of RawEvent records for one
source. Adapters are looked up by the `adapter` key of a SourceConfig in
ADAPTER_REGISTRY; factories register themselves with @register_adapter.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable

import httpx

from event_ingestion.configs.config import SourceConfig
from event_ingestion.ingestion.errors import SourceFetchError, UnknownAdapterError
from event_ingestion.schemas import RawEvent

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; EventIngestionBot/1.0)",
    "Accept-Language": "sv-SE,sv;q=0.9,en;q=0.8",
}


class SourceAdapter(ABC):
    """
    Produces raw event records for one source.

    Subclasses implement produce(). `total_hint` is set once the adapter
    knows how many records it will yield (e.g. after reading the listing page)
    and stays None when the size is unknown.
    """

    def __init__(self, config: SourceConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.options = config.options
        self.total_hint: int | None = None
        self._client = client
        self._owns_client = client is None
        self.logger = logging.getLogger(f"{__name__}.{config.adapter}")

    @property
    def source_name(self) -> str:
        return self.config.name

    @abstractmethod
    def produce(self) -> AsyncIterator[RawEvent]:
        """Yield records one at a time. Raise to signal a source-level failure."""
        ...

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={**DEFAULT_HEADERS, **self.options.get("headers", {})},
                follow_redirects=True,
            )
        return self._client

    async def _request(self, url: str, retry_count: int = 0) -> httpx.Response:
        """
        GET with retry and exponential backoff.

        Raises:
            httpx.HTTPError: after `max_retries` failed attempts
        """
        max_retries = int(self.options.get("max_retries", 2))
        timeout = float(self.options.get("request_timeout", 30))
        try:
            response = await self._get_client().get(url, timeout=timeout)
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            if retry_count < max_retries:
                wait_time = 2**retry_count
                self.logger.warning(f"Request to {url} failed, retrying in {wait_time}s: {e}")
                await asyncio.sleep(wait_time)
                return await self._request(url, retry_count + 1)
            raise

    async def fetch_entry(self, url: str) -> httpx.Response:
        """Fetch the source's entry URL. Any failure is a source fetch failure."""
        try:
            return await self._request(url)
        except httpx.HTTPError as e:
            raise SourceFetchError(self.source_name, f"Failed to fetch {url}: {e}") from e

    async def polite_delay(self) -> None:
        delay = float(self.options.get("request_delay_seconds", 0))
        if delay > 0:
            await asyncio.sleep(delay)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


AdapterFactory = Callable[..., SourceAdapter]

ADAPTER_REGISTRY: dict[str, AdapterFactory] = {}


def register_adapter(name: str):
    """
    Decorate an adapter class or factory to register it under `name`.

    Usage:
        @register_adapter("json_feed")
        class JsonFeedAdapter(SourceAdapter):
            ...
    """

    def decorator(factory: AdapterFactory) -> AdapterFactory:
        ADAPTER_REGISTRY[name] = factory
        return factory

    return decorator


def create_adapter(
    config: SourceConfig, client: httpx.AsyncClient | None = None
) -> SourceAdapter:
    """
    Instantiate the adapter a source config names.

    Raises:
        UnknownAdapterError: if no adapter is registered under `config.adapter`
    """
    factory = ADAPTER_REGISTRY.get(config.adapter)
    if factory is None:
        raise UnknownAdapterError(config.adapter)
    return factory(config, client=client)
