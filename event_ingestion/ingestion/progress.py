"""
Progress reporting for ingestion runs.

The reporter enforces the run state machine:

    starting -> scraping -> deduplicating -> categorizing ->
    matching_organizers -> importing -> completed | failed

Records stream through the whole chain one at a time, so each step is
reported when the run first reaches it (checkpoint); later records only add
counter updates. Moving backwards raises ProgressTransitionError, any step may go to
`failed`, and nothing is written after a terminal entry.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

from event_ingestion.ingestion.errors import ProgressTransitionError
from event_ingestion.schemas import (
    ProgressEntry,
    ProgressSnapshot,
    ProgressStep,
    RunStatus,
    TotalProgress,
)
from event_ingestion.storage.base import EventStore

logger = logging.getLogger(__name__)


class TimeEstimator:
    """Remaining-time estimate from the average throughput so far."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._start = clock()

    def estimate_ms(self, current: int | None, total: int | None) -> int | None:
        if not total or not current:
            return None
        elapsed_ms = (self._clock() - self._start) * 1000
        if elapsed_ms <= 0:
            return None
        per_ms = current / elapsed_ms
        remaining = max(total - current, 0)
        return round(remaining / per_ms)


class ProgressReporter:
    """
    Emits ordered ProgressEntry rows for one RunLog.

    Args:
        store: Where entries are appended
        log_id: The RunLog the entries belong to
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        store: EventStore,
        log_id: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.log_id = log_id
        self._estimator = TimeEstimator(clock)
        self._step: ProgressStep | None = None
        self._closed = False
        self._ended_elsewhere = False

    @property
    def step(self) -> ProgressStep | None:
        return self._step

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def ended_elsewhere(self) -> bool:
        """True once the store refused an entry because the run already has a terminal one."""
        return self._ended_elsewhere

    def _append(
        self,
        step: ProgressStep,
        message: str,
        current: int | None = None,
        total: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProgressEntry | None:
        entry = ProgressEntry(
            log_id=self.log_id,
            step=step,
            message=message,
            progress_current=current,
            progress_total=total,
            estimated_time_remaining_ms=self._estimator.estimate_ms(current, total),
            metadata=metadata,
        )
        stored = self.store.append_progress(entry)
        if stored is None:
            self._closed = True
            self._ended_elsewhere = True
            logger.info(f"Run {self.log_id} was ended elsewhere, dropped '{step.value}' entry")
            return None
        self._step = step
        if step.is_terminal:
            self._closed = True

        counter = f" [{current}/{total}]" if total else ""
        logger.debug(f"Run {self.log_id} {step.value}: {message}{counter}")
        return stored

    def reach(
        self,
        step: ProgressStep,
        message: str,
        current: int | None = None,
        total: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProgressEntry | None:
        """
        Move to `step`. Writes an entry only when the step is new.

        Raises:
            ProgressTransitionError: if `step` lies before the current step,
                or is terminal (use complete/fail)
        """
        if step.is_terminal:
            raise ProgressTransitionError(f"Use complete() or fail() for '{step.value}'")
        if self._closed:
            return None
        if self._step is not None and step.order < self._step.order:
            raise ProgressTransitionError(
                f"Run {self.log_id}: cannot go from '{self._step.value}' back to '{step.value}'"
            )
        if step == self._step:
            return None
        return self._append(step, message, current, total, metadata)

    def checkpoint(
        self,
        step: ProgressStep,
        message: str,
        current: int | None = None,
        total: int | None = None,
    ) -> ProgressEntry | None:
        """High-water variant of reach(): steps at or behind the current one are ignored."""
        if self._step is not None and step.order <= self._step.order:
            return None
        return self.reach(step, message, current, total)

    def update(
        self,
        message: str,
        current: int,
        total: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProgressEntry | None:
        """Counter update within the current step."""
        if self._closed or self._step is None:
            return None
        return self._append(self._step, message, current, total, metadata)

    def complete(self, message: str, metadata: dict[str, Any] | None = None) -> ProgressEntry | None:
        """Terminal success entry. `importing` is always reported before it."""
        if self._closed:
            return None
        if self._step is None or self._step.order < ProgressStep.IMPORTING.order:
            self.reach(ProgressStep.IMPORTING, "Saving events")
            if self._closed:
                return None
        return self._append(ProgressStep.COMPLETED, message, metadata=metadata)

    def fail(self, message: str, metadata: dict[str, Any] | None = None) -> ProgressEntry | None:
        """Terminal failure entry, allowed from any step."""
        if self._closed:
            return None
        return self._append(ProgressStep.FAILED, message, metadata=metadata)


# ---------------------------------------------------------------------
# Reading progress
# ---------------------------------------------------------------------


def build_snapshot(store: EventStore, log_id: int) -> ProgressSnapshot | None:
    """Progress view of one run, None when the RunLog does not exist."""
    log = store.get_run_log(log_id)
    if log is None:
        return None
    entries = store.list_progress(log_id)
    latest = entries[-1] if entries else None
    counted = next((e for e in reversed(entries) if e.progress_total), None)

    total_progress = None
    if counted is not None:
        current = counted.progress_current or 0
        total_progress = TotalProgress(
            current=current,
            total=counted.progress_total,
            percentage=int(current * 100 / counted.progress_total + 0.5),
        )

    return ProgressSnapshot(
        scraper_log=log,
        progress_logs=entries,
        total_progress=total_progress,
        is_running=log.status == RunStatus.RUNNING,
        estimated_time_remaining=latest.estimated_time_remaining_ms if latest else None,
    )


async def poll_progress(
    store: EventStore,
    log_id: int,
    interval: float = 1.0,
) -> AsyncIterator[ProgressSnapshot]:
    """
    Yield snapshots every `interval` seconds until the RunLog leaves `running`.

    The final snapshot, with the terminal status, is always yielded.

    Raises:
        KeyError: if the RunLog does not exist
    """
    while True:
        snapshot = await asyncio.to_thread(build_snapshot, store, log_id)
        if snapshot is None:
            raise KeyError(f"Scraper log {log_id} not found")
        yield snapshot
        if not snapshot.is_running:
            return
        await asyncio.sleep(interval)
