"""Source adapters. Importing this package registers the built-in adapters."""

from .api_adapter import JsonFeedAdapter
from .base_adapter import (
    ADAPTER_REGISTRY,
    SourceAdapter,
    create_adapter,
    register_adapter,
)
from .html_adapter import HtmlListingAdapter

__all__ = [
    "ADAPTER_REGISTRY",
    "HtmlListingAdapter",
    "JsonFeedAdapter",
    "SourceAdapter",
    "create_adapter",
    "register_adapter",
]
