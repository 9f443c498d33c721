"""Settings and source configuration."""

from .config import SourceConfig, load_source_configs
from .settings import Settings, get_settings

__all__ = ["Settings", "SourceConfig", "get_settings", "load_source_configs"]
