"""
PostgreSQL persistence for the ingestion engine.

Every public method runs in its own transaction: committed on success,
rolled back and re-raised on failure. Event and organizer writes are
insert-only, so rows edited by the admin UI are never overwritten.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from importlib import resources

import psycopg2.pool
from psycopg2.extras import Json, RealDictCursor, execute_values

from event_ingestion.configs.settings import Settings
from event_ingestion.ingestion.errors import DuplicateEventIdError
from event_ingestion.ingestion.normalization import normalize_phone
from event_ingestion.schemas import (
    CanonicalEvent,
    DuplicateRecord,
    Organizer,
    ProgressEntry,
    PublishDecision,
    RunLog,
    RunStatus,
)
from event_ingestion.storage.base import EventStore

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = (
    "event_id, name, description, description_format, date_time, location, "
    "venue_name, price, image_url, organizer_event_url, source_name, organizer_id, "
    "categories, category_scores, quality_score, quality_issues, status, "
    "auto_published, featured, tags, created_at"
)


def load_schema_sql() -> str:
    """DDL shipped with the package."""
    return resources.files("event_ingestion.storage").joinpath("schema.sql").read_text(
        encoding="utf-8"
    )


class PostgresEventStore(EventStore):
    """
    EventStore backed by a psycopg2 ThreadedConnectionPool.

    Parameters
    ----------
    pool : psycopg2.pool.AbstractConnectionPool
        Pool handing out connections; `from_settings` builds one from DATABASE_URL.
    """

    def __init__(self, pool):
        self._pool = pool

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresEventStore":
        pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=settings.DB_POOL_MAX_CONN,
            **settings.get_psycopg2_params(),
        )
        return cls(pool)

    @contextmanager
    def _cursor(self) -> Iterator:
        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def create_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute(load_schema_sql())
        logger.info("Database schema ensured")

    def close(self) -> None:
        self._pool.closeall()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def event_id_exists(self, event_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("SELECT 1 FROM events WHERE event_id = %s LIMIT 1", (event_id,))
            return cur.fetchone() is not None

    def find_event_by_url(self, url: str) -> CanonicalEvent | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT id, {_EVENT_COLUMNS} FROM events "
                "WHERE organizer_event_url = %s ORDER BY id LIMIT 1",
                (url,),
            )
            row = cur.fetchone()
        return CanonicalEvent.model_validate(dict(row)) if row else None

    def find_events_on_date(
        self, day: date, venue_keyword: str | None = None
    ) -> list[CanonicalEvent]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT id, {_EVENT_COLUMNS} FROM events
                WHERE (date_time AT TIME ZONE 'UTC')::date = %s
                  AND COALESCE(venue_name, location, '') ILIKE %s
                ORDER BY id
                """,
                (day, f"%{venue_keyword or ''}%"),
            )
            rows = cur.fetchall()
        return [CanonicalEvent.model_validate(dict(row)) for row in rows]

    def insert_event(self, event: CanonicalEvent) -> CanonicalEvent:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO events ({_EVENT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                        %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (event_id) DO NOTHING
                RETURNING id;
                """,
                (
                    event.event_id,
                    event.name,
                    event.description,
                    event.description_format,
                    event.date_time,
                    event.location,
                    event.venue_name,
                    event.price,
                    event.image_url,
                    event.organizer_event_url,
                    event.source_name,
                    event.organizer_id,
                    [c.value for c in event.categories],
                    Json({c.value: s for c, s in event.category_scores.items()}),
                    event.quality_score,
                    event.quality_issues,
                    event.status.value,
                    event.auto_published,
                    event.featured,
                    event.tags,
                    event.created_at,
                ),
            )
            row = cur.fetchone()
        if row is None:
            raise DuplicateEventIdError(event.event_id)
        return event.model_copy(update={"id": row["id"]})

    def get_event(self, event_id: str) -> CanonicalEvent | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT id, {_EVENT_COLUMNS} FROM events WHERE event_id = %s",
                (event_id,),
            )
            row = cur.fetchone()
        return CanonicalEvent.model_validate(dict(row)) if row else None

    def list_events(self, source_name: str | None = None) -> list[CanonicalEvent]:
        with self._cursor() as cur:
            if source_name is None:
                cur.execute(f"SELECT id, {_EVENT_COLUMNS} FROM events ORDER BY id")
            else:
                cur.execute(
                    f"SELECT id, {_EVENT_COLUMNS} FROM events WHERE source_name = %s ORDER BY id",
                    (source_name,),
                )
            rows = cur.fetchall()
        return [CanonicalEvent.model_validate(dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Organizers
    # ------------------------------------------------------------------

    def list_organizers(self) -> list[Organizer]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM organizers WHERE status <> 'archived' ORDER BY id")
            rows = cur.fetchall()
        return [Organizer.model_validate(dict(row)) for row in rows]

    def get_organizer(self, organizer_id: int) -> Organizer | None:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM organizers WHERE id = %s", (organizer_id,))
            row = cur.fetchone()
        return Organizer.model_validate(dict(row)) if row else None

    def find_organizer_by_contact(
        self, email: str | None = None, phone: str | None = None
    ) -> Organizer | None:
        with self._cursor() as cur:
            if email:
                cur.execute(
                    "SELECT * FROM organizers WHERE lower(email) = %s ORDER BY id LIMIT 1",
                    (email.strip().lower(),),
                )
                row = cur.fetchone()
                if row:
                    return Organizer.model_validate(dict(row))
            if phone:
                cur.execute("SELECT * FROM organizers WHERE phone IS NOT NULL ORDER BY id")
                wanted = normalize_phone(phone)
                for row in cur.fetchall():
                    if normalize_phone(row["phone"]) == wanted:
                        return Organizer.model_validate(dict(row))
        return None

    def create_organizer(self, organizer: Organizer) -> Organizer:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO organizers (
                    name, alternative_names, venue_name, email, phone, website,
                    status, created_from_scraper, scraper_source, needs_review, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id;
                """,
                (
                    organizer.name,
                    organizer.alternative_names,
                    organizer.venue_name,
                    organizer.email,
                    organizer.phone,
                    organizer.website,
                    organizer.status.value,
                    organizer.created_from_scraper,
                    organizer.scraper_source,
                    organizer.needs_review,
                    organizer.created_at,
                ),
            )
            row = cur.fetchone()
        return organizer.model_copy(update={"id": row["id"]})

    # ------------------------------------------------------------------
    # Run logs & progress
    # ------------------------------------------------------------------

    def create_run_log(self, log: RunLog) -> RunLog:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO scraper_logs (
                    scraper_name, scraper_url, organizer_id, status, started_at,
                    triggered_by, trigger_user_email
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id;
                """,
                (
                    log.scraper_name,
                    log.scraper_url,
                    log.organizer_id,
                    log.status.value,
                    log.started_at,
                    log.triggered_by.value,
                    log.trigger_user_email,
                ),
            )
            row = cur.fetchone()
        return log.model_copy(update={"id": row["id"]})

    def finalize_run_log(self, log: RunLog) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE scraper_logs SET
                    status = %s,
                    completed_at = %s,
                    duration_ms = %s,
                    events_found = %s,
                    events_imported = %s,
                    duplicates_skipped = %s,
                    errors = %s
                WHERE id = %s AND status = 'running';
                """,
                (
                    log.status.value,
                    log.completed_at,
                    log.duration_ms,
                    log.events_found,
                    log.events_imported,
                    log.duplicates_skipped,
                    log.errors,
                    log.id,
                ),
            )
            updated = cur.rowcount == 1
        if not updated:
            logger.warning(f"Run log {log.id} was already finalized")
        return updated

    def get_run_log(self, log_id: int) -> RunLog | None:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM scraper_logs WHERE id = %s", (log_id,))
            row = cur.fetchone()
        return RunLog.model_validate(dict(row)) if row else None

    def list_run_logs(self, status: RunStatus | None = None) -> list[RunLog]:
        with self._cursor() as cur:
            if status is None:
                cur.execute("SELECT * FROM scraper_logs ORDER BY started_at DESC")
            else:
                cur.execute(
                    "SELECT * FROM scraper_logs WHERE status = %s ORDER BY started_at DESC",
                    (status.value,),
                )
            rows = cur.fetchall()
        return [RunLog.model_validate(dict(row)) for row in rows]

    def update_run_counts(self, log: RunLog) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE scraper_logs SET
                    events_found = %s,
                    events_imported = %s,
                    duplicates_skipped = %s,
                    errors = %s
                WHERE id = %s;
                """,
                (
                    log.events_found,
                    log.events_imported,
                    log.duplicates_skipped,
                    log.errors,
                    log.id,
                ),
            )

    def append_progress(self, entry: ProgressEntry) -> ProgressEntry | None:
        # NOT EXISTS drops entries after the terminal one; uq_progress_terminal
        # rejects a second terminal entry from a concurrent writer
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO scraper_progress_logs (
                    log_id, step, message, progress_current, progress_total,
                    estimated_time_remaining_ms, metadata, created_at
                )
                SELECT %s::integer, %s::text, %s::text, %s::integer, %s::integer,
                       %s::integer, %s::jsonb, %s::timestamptz
                WHERE NOT EXISTS (
                    SELECT 1 FROM scraper_progress_logs
                    WHERE log_id = %s AND step IN ('completed', 'failed')
                )
                ON CONFLICT DO NOTHING
                RETURNING id;
                """,
                (
                    entry.log_id,
                    entry.step.value,
                    entry.message,
                    entry.progress_current,
                    entry.progress_total,
                    entry.estimated_time_remaining_ms,
                    Json(entry.metadata) if entry.metadata is not None else None,
                    entry.created_at,
                    entry.log_id,
                ),
            )
            row = cur.fetchone()
        if row is None:
            logger.debug(f"Run {entry.log_id} already has a terminal entry, dropped '{entry.step.value}'")
            return None
        return entry.model_copy(update={"id": row["id"]})

    def list_progress(self, log_id: int) -> list[ProgressEntry]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM scraper_progress_logs WHERE log_id = %s ORDER BY id ASC",
                (log_id,),
            )
            rows = cur.fetchall()
        return [ProgressEntry.model_validate(dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record_duplicates(self, records: list[DuplicateRecord]) -> None:
        if not records:
            return
        with self._cursor() as cur:
            execute_values(
                cur,
                """
                INSERT INTO duplicate_event_logs (
                    scraper_name, scraped_event_name, scraped_event_url,
                    existing_event_id, existing_event_name, existing_event_url,
                    similarity_score, match_type, scraped_at
                ) VALUES %s
                """,
                [
                    (
                        r.scraper_name,
                        r.scraped_event_name,
                        r.scraped_event_url,
                        r.existing_event_id,
                        r.existing_event_name,
                        r.existing_event_url,
                        r.similarity_score,
                        r.match_type,
                        r.scraped_at,
                    )
                    for r in records
                ],
            )
        logger.info(f"Saved {len(records)} duplicate logs")

    def record_publish_decision(self, decision: PublishDecision) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO publish_decisions (
                    event_id, source_name, organizer_id, score, issues,
                    decision, auto_published, decided_at, metadata
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    decision.event_id,
                    decision.source_name,
                    decision.organizer_id,
                    decision.score,
                    decision.issues,
                    decision.decision.value,
                    decision.auto_published,
                    decision.decided_at,
                    Json(decision.metadata),
                ),
            )
