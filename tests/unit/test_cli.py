"""Unit tests for the command-line interface."""

import json
from unittest.mock import patch

import pytest

from event_ingestion import cli
from event_ingestion.ingestion.orchestrator import IngestionOrchestrator
from event_ingestion.schemas import ProgressEntry, ProgressStep, RunLog, RunStatus, TriggerType
from tests.factories import ScriptedAdapter

SOURCES_YAML = """
sources:
  - name: Test Venue
    adapter: html_listing
    url: https://test-venue.example.com/events
    organizer_id: 1
  - name: Feed
    adapter: json_feed
    url: ${FEED_URL}
    enabled: false
"""


@pytest.fixture(autouse=True)
def quiet_cli(settings):
    with patch.object(cli, "setup_logging"), patch.object(cli, "get_settings", return_value=settings):
        yield


@pytest.fixture
def orchestrator(memory_store, create_source, create_raw_event):
    return IngestionOrchestrator(
        store=memory_store,
        sources=[create_source("Test Venue")],
        adapter_factory=lambda cfg: ScriptedAdapter(cfg, [create_raw_event()]),
    )


class TestSourcesCommand:
    def test_lists_sources(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setenv("FEED_URL", "https://feed.example.com")
        path = tmp_path / "sources.yaml"
        path.write_text(SOURCES_YAML, encoding="utf-8")

        assert cli.main(["--config", str(path), "sources"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert [s["name"] for s in data] == ["Test Venue", "Feed"]
        assert data[1]["enabled"] is False


class TestRunCommand:
    """Tests for `run`."""

    def test_run_source(self, orchestrator, memory_store, capsys):
        with patch.object(IngestionOrchestrator, "from_settings", return_value=orchestrator):
            code = cli.main(["run", "--source", "Test Venue", "--trigger", "cron"])

        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["totalImported"] == 1
        log = memory_store.get_run_log(summary["results"][0]["logId"])
        assert log.triggered_by == TriggerType.CRON

    def test_unknown_source(self, orchestrator, capsys):
        with patch.object(IngestionOrchestrator, "from_settings", return_value=orchestrator):
            code = cli.main(["run", "-s", "Nope"])
        assert code == 2
        assert "Unknown sources: Nope" in capsys.readouterr().out

    def test_failed_source_exit_code(self, memory_store, create_source, create_raw_event):
        orchestrator = IngestionOrchestrator(
            store=memory_store,
            sources=[create_source()],
            adapter_factory=lambda cfg: ScriptedAdapter(cfg, [create_raw_event()], fail_after=0),
        )
        with patch.object(IngestionOrchestrator, "from_settings", return_value=orchestrator):
            assert cli.main(["run"]) == 1


class TestProgressCommand:
    """Tests for `progress`."""

    def test_follow_finished_run(self, memory_store, capsys):
        log = memory_store.create_run_log(RunLog(scraper_name="Test Venue"))
        memory_store.append_progress(
            ProgressEntry(
                log_id=log.id,
                step=ProgressStep.IMPORTING,
                message="Saved 10 events",
                progress_current=10,
                progress_total=20,
            )
        )
        memory_store.finalize_run_log(log.model_copy(update={"status": RunStatus.SUCCESS}))

        with patch.object(cli, "create_store", return_value=memory_store):
            code = cli.main(["progress", str(log.id), "--interval", "0.1"])

        out = capsys.readouterr().out
        assert code == 0
        assert "importing: Saved 10 events [10/20]" in out
        assert f"Run {log.id} finished with status success" in out

    def test_unknown_run(self, memory_store, capsys):
        with patch.object(cli, "create_store", return_value=memory_store):
            code = cli.main(["progress", "999"])
        assert code == 1
        assert "Scraper log 999 not found" in capsys.readouterr().out
