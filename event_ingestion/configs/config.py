"""Source configuration loader for the ingestion engine."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from event_ingestion.configs.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([A-Z0-9_]+)\}")


@dataclass
class SourceConfig:
    """
    Configuration for one event source.

    Attributes:
        name: Display name, also the RunLog `scraper_name`
        adapter: Key into the adapter registry
        url: Entry URL handed to the adapter
        enabled: Disabled sources are skipped by `run_all`
        organizer_id: Organizer the source is bound to, if any
        default_category: Category hint added to every record
        match_organizers: Resolve the organizer per record (aggregator sites)
        trusted: Skip content moderation for this source
        options: Adapter-specific settings (selectors, field maps, limits)
    """

    name: str
    adapter: str
    url: str
    enabled: bool = True
    organizer_id: int | None = None
    default_category: str | None = None
    match_organizers: bool = False
    trusted: bool = False
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceConfig":
        missing = [key for key in ("name", "adapter", "url") if not data.get(key)]
        if missing:
            raise ValueError(f"Source config missing required keys: {missing}")
        organizer_id = data.get("organizer_id")
        return cls(
            name=data["name"],
            adapter=data["adapter"],
            url=data["url"],
            enabled=bool(data.get("enabled", True)),
            organizer_id=int(organizer_id) if organizer_id is not None else None,
            default_category=data.get("default_category"),
            # Sources without a bound organizer must resolve per record.
            match_organizers=bool(data.get("match_organizers", organizer_id is None)),
            trusted=bool(data.get("trusted", False)),
            options=dict(data.get("options") or {}),
        )


def _substitute_placeholders(content: str, settings: Settings) -> str:
    """Replace ${VAR} with settings values, then environment variables."""
    values = settings.model_dump()

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key in values and values[key] is not None:
            value = values[key]
            return (
                value.get_secret_value()
                if hasattr(value, "get_secret_value")
                else str(value)
            )
        return os.environ.get(key, match.group(0))

    return _PLACEHOLDER.sub(_replace, content)


def load_source_configs(
    path: Path | str | None = None,
    settings: Settings | None = None,
) -> list[SourceConfig]:
    """
    Load source configurations from YAML.

    Args:
        path: Path to sources.yaml. Defaults to settings.SOURCES_CONFIG_PATH
        settings: Settings used for ${VAR} substitution

    Returns:
        List of SourceConfig in file order (enabled and disabled)
    """
    settings = settings or get_settings()
    config_path = Path(path) if path else settings.SOURCES_CONFIG_PATH

    if not config_path.exists():
        raise FileNotFoundError(f"Missing config at {config_path}")

    with open(config_path, encoding="utf-8") as f:
        content = _substitute_placeholders(f.read(), settings)

    data = yaml.safe_load(content) or {}
    sources = [SourceConfig.from_dict(item) for item in data.get("sources", [])]

    names = [s.name for s in sources]
    duplicates = {n for n in names if names.count(n) > 1}
    if duplicates:
        raise ValueError(f"Duplicate source names in {config_path}: {sorted(duplicates)}")

    logger.info(f"Loaded {len(sources)} source configs from {config_path}")
    return sources
