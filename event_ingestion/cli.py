#!/usr/bin/env python3
"""
cli.py

Command-line interface for the Event Ingestion Engine.

Commands:
  - run       : Run all enabled sources, or the ones named with --source
  - sources   : List configured sources
  - progress  : Follow the progress of a run until it finishes

Typical usage:
  python -m event_ingestion.cli run --source "Arena Varberg" --trigger cron
  python -m event_ingestion.cli sources
  python -m event_ingestion.cli progress 42
"""

from __future__ import annotations

import argparse
import asyncio
import json

from event_ingestion.configs.config import load_source_configs
from event_ingestion.configs.settings import get_settings
from event_ingestion.ingestion.errors import UnknownSourceError
from event_ingestion.ingestion.orchestrator import IngestionOrchestrator
from event_ingestion.ingestion.progress import poll_progress
from event_ingestion.monitoring.logging import LoggingOptions, setup_logging
from event_ingestion.schemas import TriggerInfo, TriggerType
from event_ingestion.storage import create_store


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="event-ingestion", description="Event Ingestion Engine CLI")
    p.add_argument("--config", "-c", default=None, help="Path to sources.yaml")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    sub = p.add_subparsers(dest="cmd", required=True)

    # run
    pr = sub.add_parser("run", help="Run ingestion")
    pr.add_argument(
        "--source",
        "-s",
        action="append",
        default=None,
        help="Run only this source (repeatable)",
    )
    pr.add_argument(
        "--trigger",
        default=TriggerType.SCRIPT.value,
        choices=[TriggerType.SCRIPT.value, TriggerType.CRON.value],
        help="Trigger type stored on the run logs",
    )

    # sources
    sub.add_parser("sources", help="List configured sources")

    # progress
    pp = sub.add_parser("progress", help="Follow a run's progress")
    pp.add_argument("log_id", type=int, help="RunLog id")
    pp.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between polls (defaults to PROGRESS_POLL_INTERVAL_SECONDS)",
    )

    return p.parse_args(argv)


def _print(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _follow(store, log_id: int, interval: float) -> int:
    last_seen = 0
    try:
        async for snapshot in poll_progress(store, log_id, interval=interval):
            for entry in snapshot.progress_logs[last_seen:]:
                counter = (
                    f" [{entry.progress_current}/{entry.progress_total}]"
                    if entry.progress_total
                    else ""
                )
                print(f"{entry.created_at:%H:%M:%S} {entry.step.value}: {entry.message}{counter}")
            last_seen = len(snapshot.progress_logs)
            final = snapshot
    except KeyError as e:
        print(str(e).strip("'"))
        return 1
    print(f"Run {log_id} finished with status {final.scraper_log.status.value}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging(
        LoggingOptions(level=settings.LOG_LEVEL, json_logs=args.json_logs or settings.JSON_LOGS)
    )

    if args.cmd == "sources":
        sources = load_source_configs(args.config, settings=settings)
        _print(
            [
                {
                    "name": s.name,
                    "adapter": s.adapter,
                    "url": s.url,
                    "enabled": s.enabled,
                    "organizer_id": s.organizer_id,
                }
                for s in sources
            ]
        )
        return 0

    if args.cmd == "progress":
        store = create_store(settings)
        interval = args.interval or settings.PROGRESS_POLL_INTERVAL_SECONDS
        try:
            return asyncio.run(_follow(store, args.log_id, interval))
        finally:
            store.close()

    if args.cmd == "run":
        sources = load_source_configs(args.config, settings=settings)
        orchestrator = IngestionOrchestrator.from_settings(settings, sources=sources)
        trigger = TriggerInfo(triggered_by=TriggerType(args.trigger))
        try:
            summary = asyncio.run(orchestrator.run_all(args.source, trigger=trigger))
        except UnknownSourceError as e:
            print(str(e))
            return 2
        finally:
            orchestrator.store.close()

        _print(summary.model_dump(mode="json", by_alias=True))
        return 0 if all(r.success for r in summary.results) else 1

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
