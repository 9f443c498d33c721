"""
Unit tests for PostgresEventStore.

The connection pool and cursors are mocks; the tests check transaction
handling and how rows map to and from the schemas.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from event_ingestion.ingestion.errors import DuplicateEventIdError
from event_ingestion.schemas import (
    EventCategory,
    Organizer,
    ProgressEntry,
    ProgressStep,
    RunLog,
    RunStatus,
)
from event_ingestion.storage.postgres import PostgresEventStore, load_schema_sql


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def conn(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


@pytest.fixture
def pool(conn):
    pool = MagicMock()
    pool.getconn.return_value = conn
    return pool


@pytest.fixture
def store(pool):
    return PostgresEventStore(pool)


class TestTransactions:
    """Every call runs in its own transaction."""

    def test_commit_on_success(self, store, pool, conn, cursor):
        cursor.fetchone.return_value = None
        assert store.event_id_exists("kent") is False
        conn.commit.assert_called_once()
        pool.putconn.assert_called_once_with(conn)

    def test_rollback_on_error(self, store, pool, conn, cursor):
        cursor.execute.side_effect = RuntimeError("connection lost")
        with pytest.raises(RuntimeError):
            store.event_id_exists("kent")
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        pool.putconn.assert_called_once_with(conn)

    def test_close(self, store, pool):
        store.close()
        pool.closeall.assert_called_once()


class TestEvents:
    def test_insert_returns_id(self, store, cursor, create_canonical_event):
        cursor.fetchone.return_value = {"id": 42}
        stored = store.insert_event(create_canonical_event(event_id="kent"))
        assert stored.id == 42
        sql, params = cursor.execute.call_args.args
        assert "ON CONFLICT (event_id) DO NOTHING" in sql
        assert params[0] == "kent"
        assert params[12] == ["Scen"]

    def test_insert_conflict(self, store, cursor, create_canonical_event):
        cursor.fetchone.return_value = None
        with pytest.raises(DuplicateEventIdError):
            store.insert_event(create_canonical_event(event_id="kent"))

    def test_row_to_event(self, store, cursor):
        cursor.fetchone.return_value = {
            "id": 7,
            "event_id": "kent",
            "name": "Kent",
            "description": None,
            "description_format": "markdown",
            "date_time": datetime(2026, 3, 1, 19, tzinfo=UTC),
            "location": None,
            "venue_name": "Arena Varberg",
            "price": None,
            "image_url": None,
            "organizer_event_url": "https://x.example.com/kent",
            "source_name": "Arena Varberg",
            "organizer_id": 5,
            "categories": ["Scen"],
            "category_scores": {"Scen": 0.9},
            "quality_score": 75,
            "quality_issues": ["Image missing"],
            "status": "pending_approval",
            "auto_published": False,
            "featured": False,
            "tags": [],
            "created_at": datetime(2026, 1, 1, tzinfo=UTC),
        }
        event = store.find_event_by_url("https://x.example.com/kent")
        assert event.id == 7
        assert event.categories == [EventCategory.SCEN]
        assert event.category_scores == {EventCategory.SCEN: 0.9}

    def test_find_events_on_date_uses_keyword(self, store, cursor):
        cursor.fetchall.return_value = []
        store.find_events_on_date(datetime(2026, 3, 1).date(), "Arena")
        assert cursor.execute.call_args.args[1][1] == "%Arena%"


class TestOrganizers:
    def test_create_organizer(self, store, cursor):
        cursor.fetchone.return_value = {"id": 12}
        created = store.create_organizer(Organizer.auto_created("Nytt ställe", source="X"))
        assert created.id == 12
        assert cursor.execute.call_args.args[1][6] == "pending"

    def test_phone_lookup_ignores_formatting(self, store, cursor):
        cursor.fetchall.return_value = [
            {"id": 5, "name": "Arena Varberg", "phone": "0340-123 45", "alternative_names": []}
        ]
        organizer = store.find_organizer_by_contact(phone="0340 12345")
        assert organizer.id == 5


class TestRunLogs:
    """Tests for run log bookkeeping."""

    def test_create_run_log(self, store, cursor):
        cursor.fetchone.return_value = {"id": 3}
        log = store.create_run_log(RunLog(scraper_name="Arena Varberg"))
        assert log.id == 3
        assert cursor.execute.call_args.args[1][3] == "running"

    def test_finalize_only_running_rows(self, store, cursor):
        log = RunLog(id=3, scraper_name="Arena Varberg", status=RunStatus.SUCCESS)

        cursor.rowcount = 1
        assert store.finalize_run_log(log) is True
        assert "status = 'running'" in cursor.execute.call_args.args[0]

        cursor.rowcount = 0
        assert store.finalize_run_log(log) is False

    def test_append_progress(self, store, cursor):
        cursor.fetchone.return_value = {"id": 9}
        entry = store.append_progress(
            ProgressEntry(log_id=3, step=ProgressStep.SCRAPING, message="Fetching")
        )
        assert entry.id == 9
        params = cursor.execute.call_args.args[1]
        assert params[1] == "scraping"
        assert params[6] is None

    def test_append_progress_refused_after_terminal(self, store, cursor):
        cursor.fetchone.return_value = None
        entry = store.append_progress(
            ProgressEntry(log_id=3, step=ProgressStep.FAILED, message="Process cancelled by user")
        )
        assert entry is None
        sql, params = cursor.execute.call_args.args
        assert "NOT EXISTS" in sql
        assert params[-1] == 3

    def test_update_run_counts(self, store, cursor):
        log = RunLog(id=3, scraper_name="Arena Varberg", events_found=4, events_imported=2)
        store.update_run_counts(log)
        sql, params = cursor.execute.call_args.args
        assert "status" not in sql
        assert params[1] == 2
        assert params[-1] == 3


def test_schema_sql_ships_with_package():
    sql = load_schema_sql()
    for table in ("events", "organizers", "scraper_logs", "scraper_progress_logs"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in sql
    assert "uq_progress_terminal" in sql
