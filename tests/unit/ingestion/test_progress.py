"""
Unit tests for progress reporting.

Tests for:
- ProgressReporter step ordering and terminal entries
- TimeEstimator
- build_snapshot() and poll_progress()
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from event_ingestion.ingestion.errors import ProgressTransitionError
from event_ingestion.ingestion.progress import (
    ProgressReporter,
    TimeEstimator,
    build_snapshot,
    poll_progress,
)
from event_ingestion.schemas import ProgressStep, RunLog, RunStatus


@pytest.fixture
def run_log(memory_store):
    return memory_store.create_run_log(RunLog(scraper_name="Test Venue"))


@pytest.fixture
def reporter(memory_store, run_log):
    return ProgressReporter(memory_store, run_log.id)


def _steps(store, log_id):
    return [entry.step for entry in store.list_progress(log_id)]


class FakeClock:
    def __init__(self, *values):
        self.values = list(values)

    def __call__(self):
        return self.values.pop(0) if len(self.values) > 1 else self.values[0]


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_forward_steps_written_once(self, reporter, memory_store, run_log):
        reporter.reach(ProgressStep.STARTING, "Starting")
        reporter.reach(ProgressStep.SCRAPING, "Fetching")
        reporter.reach(ProgressStep.SCRAPING, "Fetching again")

        assert _steps(memory_store, run_log.id) == [ProgressStep.STARTING, ProgressStep.SCRAPING]
        assert reporter.step == ProgressStep.SCRAPING

    def test_backward_move_raises(self, reporter):
        reporter.reach(ProgressStep.CATEGORIZING, "Categorizing")
        with pytest.raises(ProgressTransitionError):
            reporter.reach(ProgressStep.SCRAPING, "Fetching")

    def test_reach_rejects_terminal_steps(self, reporter):
        with pytest.raises(ProgressTransitionError):
            reporter.reach(ProgressStep.COMPLETED, "Done")

    def test_checkpoint_ignores_earlier_steps(self, reporter, memory_store, run_log):
        reporter.reach(ProgressStep.SCRAPING, "Fetching")
        reporter.checkpoint(ProgressStep.DEDUPLICATING, "Checking duplicates")
        reporter.checkpoint(ProgressStep.CATEGORIZING, "Categorizing")
        assert reporter.checkpoint(ProgressStep.DEDUPLICATING, "Checking duplicates") is None
        assert _steps(memory_store, run_log.id) == [
            ProgressStep.SCRAPING,
            ProgressStep.DEDUPLICATING,
            ProgressStep.CATEGORIZING,
        ]

    def test_update_stays_on_current_step(self, reporter, memory_store, run_log):
        assert reporter.update("ignored", 1, 5) is None
        reporter.reach(ProgressStep.IMPORTING, "Saving events")
        entry = reporter.update("Imported 3 of 5", 3, 5)
        assert entry.step == ProgressStep.IMPORTING
        assert entry.progress_current == 3
        assert entry.progress_total == 5

    def test_complete_reports_importing_first(self, reporter, memory_store, run_log):
        reporter.reach(ProgressStep.SCRAPING, "Fetching")
        reporter.complete("Done", metadata={"imported": 0})

        assert _steps(memory_store, run_log.id) == [
            ProgressStep.SCRAPING,
            ProgressStep.IMPORTING,
            ProgressStep.COMPLETED,
        ]
        assert memory_store.list_progress(run_log.id)[-1].metadata == {"imported": 0}

    def test_nothing_written_after_terminal(self, reporter, memory_store, run_log):
        reporter.reach(ProgressStep.SCRAPING, "Fetching")
        reporter.fail("Connection reset by peer")

        assert reporter.is_closed
        assert reporter.complete("Done") is None
        assert reporter.fail("again") is None
        assert reporter.reach(ProgressStep.IMPORTING, "Saving") is None
        assert _steps(memory_store, run_log.id) == [ProgressStep.SCRAPING, ProgressStep.FAILED]

    def test_fail_allowed_from_any_step(self, reporter, memory_store, run_log):
        entry = reporter.fail("Could not start")
        assert entry.step == ProgressStep.FAILED

    def test_run_ended_by_another_reporter(self, reporter, memory_store, run_log):
        reporter.reach(ProgressStep.SCRAPING, "Fetching")
        ProgressReporter(memory_store, run_log.id).fail("Process cancelled by user")

        assert reporter.complete("Done") is None
        assert reporter.ended_elsewhere
        assert reporter.is_closed
        assert _steps(memory_store, run_log.id) == [ProgressStep.SCRAPING, ProgressStep.FAILED]


class TestTimeEstimator:
    def test_estimate_from_throughput(self):
        estimator = TimeEstimator(FakeClock(0.0, 10.0))
        assert estimator.estimate_ms(5, 20) == 30000

    def test_unknown_without_counts(self):
        estimator = TimeEstimator(FakeClock(0.0, 10.0))
        assert estimator.estimate_ms(0, 20) is None
        assert estimator.estimate_ms(5, None) is None


class TestBuildSnapshot:
    """Tests for build_snapshot()."""

    def test_missing_log(self, memory_store):
        assert build_snapshot(memory_store, 999) is None

    def test_total_progress_from_latest_counted_entry(self, reporter, memory_store, run_log):
        reporter.reach(ProgressStep.SCRAPING, "Fetching")
        reporter.reach(ProgressStep.IMPORTING, "Saving events")
        reporter.update("Imported 1 of 3", 1, 3)

        snapshot = build_snapshot(memory_store, run_log.id)

        assert snapshot.is_running
        assert len(snapshot.progress_logs) == 3
        assert snapshot.total_progress.current == 1
        assert snapshot.total_progress.total == 3
        assert snapshot.total_progress.percentage == 33

    def test_camel_case_payload(self, reporter, memory_store, run_log):
        reporter.reach(ProgressStep.SCRAPING, "Fetching")
        data = build_snapshot(memory_store, run_log.id).model_dump(mode="json", by_alias=True)
        assert {"scraperLog", "progressLogs", "totalProgress", "isRunning"} <= set(data)
        assert data["totalProgress"] is None


class TestPollProgress:
    """Tests for poll_progress()."""

    def test_unknown_log_raises(self, memory_store):
        async def _collect():
            return [s async for s in poll_progress(memory_store, 999)]

        with pytest.raises(KeyError):
            asyncio.run(_collect())

    def test_polls_until_terminal(self, memory_store, run_log):
        def finish(_interval):
            memory_store.finalize_run_log(run_log.model_copy(update={"status": RunStatus.SUCCESS}))

        async def _collect():
            return [s async for s in poll_progress(memory_store, run_log.id, interval=0.5)]

        with patch("asyncio.sleep", new=AsyncMock(side_effect=finish)) as sleep:
            snapshots = asyncio.run(_collect())

        assert [s.is_running for s in snapshots] == [True, False]
        assert snapshots[-1].scraper_log.status == RunStatus.SUCCESS
        sleep.assert_awaited_once_with(0.5)
