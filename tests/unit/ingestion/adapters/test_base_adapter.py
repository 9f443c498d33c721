"""
Unit tests for the base_adapter module.

Tests for SourceAdapter HTTP helpers, the adapter registry and create_adapter.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from event_ingestion.configs.config import SourceConfig
from event_ingestion.ingestion.adapters import (
    ADAPTER_REGISTRY,
    HtmlListingAdapter,
    JsonFeedAdapter,
    SourceAdapter,
    create_adapter,
    register_adapter,
)
from event_ingestion.ingestion.errors import SourceFetchError, UnknownAdapterError


class EmptyAdapter(SourceAdapter):
    async def produce(self):
        return
        yield


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _config(**options) -> SourceConfig:
    return SourceConfig(
        name="Test Venue", adapter="empty", url="https://test.example.com/", options=options
    )


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestRegistry:
    """Tests for the adapter registry."""

    def test_builtin_adapters_registered(self):
        """Should register the built-in adapters on import."""
        assert ADAPTER_REGISTRY["html_listing"] is HtmlListingAdapter
        assert ADAPTER_REGISTRY["json_feed"] is JsonFeedAdapter

    def test_create_adapter(self):
        """Should instantiate the adapter named by the config."""
        config = SourceConfig(name="Feed", adapter="json_feed", url="https://feed.example.com")
        adapter = create_adapter(config)
        assert isinstance(adapter, JsonFeedAdapter)
        assert adapter.source_name == "Feed"
        assert adapter.total_hint is None

    def test_unknown_adapter(self):
        """Should raise UnknownAdapterError for unregistered keys."""
        config = SourceConfig(name="X", adapter="carrier_pigeon", url="https://x.example.com")
        with pytest.raises(UnknownAdapterError) as exc_info:
            create_adapter(config)
        assert "carrier_pigeon" in str(exc_info.value)

    def test_register_custom_adapter(self):
        """Should make decorated adapters available to create_adapter."""
        try:
            register_adapter("empty")(EmptyAdapter)
            assert isinstance(create_adapter(_config()), EmptyAdapter)
        finally:
            ADAPTER_REGISTRY.pop("empty", None)


class TestRequests:
    """Tests for retries and fetch errors."""

    def test_retries_with_backoff(self):
        """Should retry failed requests with exponential backoff."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, text="ok")

        adapter = EmptyAdapter(_config(max_retries=2), client=_client(handler))
        with patch("asyncio.sleep", new=AsyncMock()) as sleep:
            response = asyncio.run(adapter._request("https://test.example.com/"))

        assert response.text == "ok"
        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    def test_fetch_entry_failure(self):
        """Should wrap exhausted retries in SourceFetchError."""
        adapter = EmptyAdapter(
            _config(max_retries=1), client=_client(lambda request: httpx.Response(500))
        )
        with patch("asyncio.sleep", new=AsyncMock()):
            with pytest.raises(SourceFetchError) as exc_info:
                asyncio.run(adapter.fetch_entry("https://test.example.com/"))
        assert exc_info.value.source == "Test Venue"

    def test_polite_delay(self):
        adapter = EmptyAdapter(_config(request_delay_seconds=0.5))
        with patch("asyncio.sleep", new=AsyncMock()) as sleep:
            asyncio.run(adapter.polite_delay())
        sleep.assert_awaited_once_with(0.5)

    def test_close_keeps_injected_client(self):
        """Should not close a client it did not create."""
        client = _client(lambda request: httpx.Response(200))
        adapter = EmptyAdapter(_config(), client=client)
        asyncio.run(adapter.close())
        assert not client.is_closed

    def test_close_owned_client(self):
        adapter = EmptyAdapter(_config(headers={"X-Test": "1"}))
        client = adapter._get_client()
        assert client.headers["X-Test"] == "1"
        asyncio.run(adapter.close())
        assert client.is_closed
