"""
Run Orchestrator.

Runs configured sources, streams each produced record through
dedup -> categorize -> organizer resolution -> quality scoring -> persistence,
and owns the RunLog of every source run from `running` to its single terminal
status.

Records are pulled from the adapter one at a time. A record is fully persisted
before the next one is requested, so whatever was imported before an adapter
error, a timeout or a cancellation stays imported.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from event_ingestion.configs.config import SourceConfig, load_source_configs
from event_ingestion.configs.settings import Settings, get_settings
from event_ingestion.ingestion.adapters import SourceAdapter, create_adapter
from event_ingestion.ingestion.cancellation import CancellationRegistry, CancellationToken
from event_ingestion.ingestion.categorizer import EventCategorizer
from event_ingestion.ingestion.deduplication import Deduplicator
from event_ingestion.ingestion.errors import (
    CANCELLED_MESSAGE,
    DuplicateEventIdError,
    RunCancelledError,
    RunTimeoutError,
    UnknownSourceError,
)
from event_ingestion.ingestion.event_ids import generate_unique_event_id
from event_ingestion.ingestion.normalization import parse_event_datetime
from event_ingestion.ingestion.organizer_resolver import OrganizerResolution, OrganizerResolver
from event_ingestion.ingestion.progress import ProgressReporter
from event_ingestion.ingestion.quality import QualityAssessment, QualityScorer, record_decision
from event_ingestion.monitoring.logging import with_context
from event_ingestion.schemas import (
    CanonicalEvent,
    CategorizationResult,
    EventStatus,
    ProgressStep,
    RawEvent,
    RunLog,
    RunResult,
    RunStatus,
    RunSummary,
    TriggerInfo,
)
from event_ingestion.storage import EventStore, create_store

logger = logging.getLogger(__name__)

PROGRESS_UPDATE_EVERY = 10
MAX_ID_ATTEMPTS = 3

AdapterBuilder = Callable[[SourceConfig], SourceAdapter]


@dataclass
class RunCounters:
    """Per-run aggregates, incremented per record and written once at the end."""

    found: int = 0
    imported: int = 0
    duplicates: int = 0
    published: int = 0
    pending: int = 0
    draft: int = 0
    errors: list[str] = field(default_factory=list)

    def count_decision(self, status: EventStatus) -> None:
        if status == EventStatus.PUBLISHED:
            self.published += 1
        elif status == EventStatus.PENDING_APPROVAL:
            self.pending += 1
        else:
            self.draft += 1

    def stats(self) -> dict[str, int]:
        return {
            "imported": self.imported,
            "duplicates": self.duplicates,
            "published": self.published,
            "pending": self.pending,
            "draft": self.draft,
        }


def completion_status(counters: RunCounters) -> RunStatus:
    """Status of a run whose adapter finished without raising."""
    if not counters.errors:
        return RunStatus.SUCCESS
    return RunStatus.PARTIAL if counters.imported else RunStatus.FAILED


class IngestionOrchestrator:
    """
    Coordinates source runs.

    Responsibilities:
    - Select sources and run them with bounded concurrency
    - Drive the per-record chain for each source
    - Enforce the per-run time budget and cooperative cancellation
    - Finalize every RunLog exactly once and report progress
    """

    def __init__(
        self,
        store: EventStore,
        sources: list[SourceConfig],
        categorizer: EventCategorizer | None = None,
        resolver: OrganizerResolver | None = None,
        scorer: QualityScorer | None = None,
        run_timeout: float = 300.0,
        max_concurrent: int = 1,
        adapter_factory: AdapterBuilder = create_adapter,
        registry: CancellationRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.logger = logging.getLogger("orchestrator")
        self.store = store
        self.sources = list(sources)
        self.categorizer = categorizer or EventCategorizer()
        self.resolver = resolver or OrganizerResolver(store)
        self.scorer = scorer or QualityScorer()
        self.run_timeout = run_timeout
        self.max_concurrent = max(1, max_concurrent)
        self.adapter_factory = adapter_factory
        self.registry = registry or CancellationRegistry()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        store: EventStore | None = None,
        sources: list[SourceConfig] | None = None,
    ) -> "IngestionOrchestrator":
        """Wire an orchestrator from application settings and sources.yaml."""
        from event_ingestion.agents.llm import get_llm_client
        from event_ingestion.agents.moderation import ContentModerator

        settings = settings or get_settings()
        store = store or create_store(settings)
        if sources is None:
            sources = load_source_configs(settings=settings)

        llm = None
        if settings.CATEGORIZER_ENABLED:
            llm = get_llm_client(settings.CATEGORIZER_PROVIDER, settings.CATEGORIZER_MODEL)
        moderator = ContentModerator() if settings.MODERATION_ENABLED else None

        return cls(
            store=store,
            sources=sources,
            categorizer=EventCategorizer(llm),
            resolver=OrganizerResolver(store),
            scorer=QualityScorer.from_settings(settings, moderator=moderator),
            run_timeout=settings.RUN_TIMEOUT_SECONDS,
            max_concurrent=settings.MAX_CONCURRENT_SOURCES,
        )

    # ========================================================================
    # SOURCE MANAGEMENT
    # ========================================================================

    def get_source(self, name: str) -> SourceConfig | None:
        return next((s for s in self.sources if s.name == name), None)

    def list_sources(self) -> list[SourceConfig]:
        return list(self.sources)

    def select_sources(self, names: Iterable[str] | None = None) -> list[SourceConfig]:
        """
        Enabled sources, optionally restricted to `names`.

        Raises:
            UnknownSourceError: if a requested name is not configured
        """
        requested = set(names or [])
        unknown = requested - {s.name for s in self.sources}
        if unknown:
            raise UnknownSourceError(sorted(unknown))

        selected = []
        for source in self.sources:
            if requested and source.name not in requested:
                continue
            if not source.enabled:
                if requested:
                    self.logger.warning(f"Skipping disabled source: {source.name}")
                continue
            selected.append(source)
        return selected

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def run_all(
        self,
        source_filter: Iterable[str] | None = None,
        trigger: TriggerInfo | None = None,
    ) -> RunSummary:
        """
        Run every enabled source, or only the named subset.

        Args:
            source_filter: Source names to run. None or empty runs all enabled
            trigger: Who or what started the run, stored on each RunLog

        Returns:
            RunSummary with one RunResult per source, in configuration order

        Raises:
            UnknownSourceError: if `source_filter` names an unknown source
        """
        trigger = trigger or TriggerInfo()
        sources = self.select_sources(source_filter)
        self.categorizer.clear_cache()
        self.logger.info(
            f"Starting ingestion of {len(sources)} source(s), "
            f"triggered by {trigger.triggered_by.value}"
        )

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _bounded(source: SourceConfig) -> RunResult:
            async with semaphore:
                return await self.run_source(source, trigger)

        results = await asyncio.gather(*(_bounded(s) for s in sources))
        summary = RunSummary.from_results(list(results))
        self.logger.info(
            f"Ingestion finished: {summary.total_imported} imported, "
            f"{summary.total_duplicates} duplicates, {summary.total_found} found"
        )
        return summary

    async def run_source(
        self,
        source: SourceConfig,
        trigger: TriggerInfo | None = None,
        token: CancellationToken | None = None,
    ) -> RunResult:
        """
        Run one source end to end. The RunLog never stays `running` after this returns.

        Args:
            source: Source to run
            trigger: Trigger metadata for the RunLog
            token: Cancellation token; a fresh one is created when omitted
        """
        trigger = trigger or TriggerInfo()
        token = token or CancellationToken()

        new_log = RunLog(
            scraper_name=source.name,
            scraper_url=source.url,
            organizer_id=source.organizer_id,
            triggered_by=trigger.triggered_by,
            trigger_user_email=trigger.user_email,
        )
        try:
            log = self.registry.claim(lambda: self.store.create_run_log(new_log), token)
        except Exception as e:
            self.logger.error(f"Could not create run log for {source.name}: {e}", exc_info=True)
            return RunResult(
                source=source.name,
                success=False,
                errors=[f"Could not create run log: {e}"],
                status=RunStatus.FAILED,
            )

        run_logger = with_context(logger, log_id=log.id, source=source.name)
        reporter = ProgressReporter(self.store, log.id, clock=self._clock)
        counters = RunCounters()
        started = self._clock()
        status = RunStatus.FAILED
        budget = asyncio.timeout(self.run_timeout)

        run_logger.info(f"Run started for {source.url}")
        try:
            async with budget:
                await self._ingest(source, token, reporter, counters)
            status = completion_status(counters)
        except RunCancelledError as e:
            status = RunStatus.CANCELLED
            counters.errors.append(str(e))
            run_logger.warning("Run cancelled")
        except Exception as e:
            if isinstance(e, TimeoutError) and budget.expired():
                status = RunStatus.FAILED
                counters.errors.append(str(RunTimeoutError(self.run_timeout)))
                run_logger.error(f"Run exceeded its {self.run_timeout:g}s budget")
            else:
                status = RunStatus.PARTIAL if counters.imported else RunStatus.FAILED
                counters.errors.append(str(e))
                run_logger.error(f"Source failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            status = RunStatus.CANCELLED
            counters.errors.append(CANCELLED_MESSAGE)
            raise
        finally:
            try:
                status = self._finish(log, status, counters, reporter, started, run_logger)
            finally:
                self.registry.unregister(log.id)

        return RunResult(
            source=source.name,
            success=status in (RunStatus.SUCCESS, RunStatus.PARTIAL),
            events_found=counters.found,
            events_imported=counters.imported,
            duplicates_skipped=counters.duplicates,
            errors=list(counters.errors),
            log_id=log.id,
            status=status,
        )

    async def _ingest(
        self,
        source: SourceConfig,
        token: CancellationToken,
        reporter: ProgressReporter,
        counters: RunCounters,
    ) -> None:
        reporter.reach(ProgressStep.STARTING, f"Starting {source.name}")
        adapter = self.adapter_factory(source)
        deduplicator = Deduplicator(self.store)
        records = adapter.produce()
        try:
            reporter.reach(ProgressStep.SCRAPING, f"Fetching events from {source.name}")
            while True:
                token.raise_if_cancelled()
                try:
                    raw = await token.run(_next_record(records))
                except StopAsyncIteration:
                    break
                counters.found += 1
                await asyncio.to_thread(self._raise_if_ended_elsewhere, reporter.log_id)
                await self._process_record(
                    raw, source, deduplicator, token, reporter, counters, adapter.total_hint
                )
        finally:
            self._flush_duplicates(deduplicator)
            await records.aclose()
            await adapter.close()

    def _raise_if_ended_elsewhere(self, log_id: int) -> None:
        """A cancel from another process or orchestrator only shows on the stored row."""
        log = self.store.get_run_log(log_id)
        if log is not None and log.status != RunStatus.RUNNING:
            raise RunCancelledError()

    # ========================================================================
    # PER-RECORD CHAIN
    # ========================================================================

    async def _process_record(
        self,
        raw: RawEvent,
        source: SourceConfig,
        deduplicator: Deduplicator,
        token: CancellationToken,
        reporter: ProgressReporter,
        counters: RunCounters,
        total: int | None,
    ) -> None:
        """Run one record through the chain. Only cancellation escapes."""
        current = counters.found
        try:
            reporter.checkpoint(
                ProgressStep.DEDUPLICATING, "Checking for duplicates", current, total
            )
            if await asyncio.to_thread(deduplicator.is_duplicate, raw, source.name):
                counters.duplicates += 1
                return

            reporter.checkpoint(ProgressStep.CATEGORIZING, "Categorizing events", current, total)
            hints = [source.default_category] if source.default_category else None
            categorization = await self.categorizer.categorize(raw, hints=hints, guard=token.run)

            reporter.checkpoint(
                ProgressStep.MATCHING_ORGANIZERS, "Matching organizers", current, total
            )
            resolution = await asyncio.to_thread(
                self.resolver.resolve,
                raw,
                source.name,
                source.organizer_id,
                source.match_organizers,
            )

            event = self._build_event(raw, source, categorization, resolution)
            assessment = await self.scorer.assess(
                event,
                trusted=source.trusted,
                organizer_pending=resolution.pending,
                guard=token.run,
            )

            reporter.checkpoint(ProgressStep.IMPORTING, "Saving events", current, total)
            token.raise_if_cancelled()
            persist = asyncio.ensure_future(
                asyncio.to_thread(self._persist, event, assessment, source.name)
            )
            try:
                stored = await asyncio.shield(persist)
            except asyncio.CancelledError:
                # the insert thread cannot be interrupted; count what it wrote
                try:
                    stored = await persist
                except Exception as e:
                    counters.errors.append(f"Error importing {raw.name}: {e}")
                    logger.error(f"Error importing {raw.name}: {e}")
                else:
                    self._count_import(stored, raw, deduplicator, reporter, counters, current, total)
                raise
        except RunCancelledError:
            raise
        except Exception as e:
            message = f"Error importing {raw.name}: {e}"
            counters.errors.append(message)
            logger.error(message)
            return

        self._count_import(stored, raw, deduplicator, reporter, counters, current, total)

    def _count_import(
        self,
        stored: CanonicalEvent,
        raw: RawEvent,
        deduplicator: Deduplicator,
        reporter: ProgressReporter,
        counters: RunCounters,
        current: int,
        total: int | None,
    ) -> None:
        deduplicator.mark_imported(raw)
        counters.imported += 1
        counters.count_decision(stored.status)
        if counters.imported % PROGRESS_UPDATE_EVERY == 0:
            reporter.update(f"Saved {counters.imported} events", current, total)

    def _build_event(
        self,
        raw: RawEvent,
        source: SourceConfig,
        categorization: CategorizationResult,
        resolution: OrganizerResolution,
    ) -> CanonicalEvent:
        # event_id is assigned at insert time
        return CanonicalEvent(
            event_id="pending",
            name=raw.name,
            description=raw.description,
            date_time=parse_event_datetime(raw.date_time),
            location=raw.location or raw.venue_name,
            venue_name=raw.venue_name,
            price=raw.price,
            image_url=raw.image_url,
            organizer_event_url=raw.external_url,
            source_name=source.name,
            organizer_id=resolution.organizer_id,
            categories=categorization.categories,
            category_scores=categorization.scores,
            tags=raw.tags,
        )

    def _persist(
        self, event: CanonicalEvent, assessment: QualityAssessment, source: str
    ) -> CanonicalEvent:
        """Insert with a fresh event_id, retrying if another writer takes it first."""
        event = event.model_copy(
            update={
                "quality_score": assessment.score,
                "quality_issues": assessment.issues,
                "status": assessment.decision,
                "auto_published": assessment.auto_published,
            }
        )
        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            event_id = generate_unique_event_id(event.name, source, self.store.event_id_exists)
            try:
                stored = self.store.insert_event(event.model_copy(update={"event_id": event_id}))
                break
            except DuplicateEventIdError:
                if attempt == MAX_ID_ATTEMPTS:
                    raise
                logger.debug(f"event_id '{event_id}' taken concurrently, retrying")
        record_decision(self.store, stored, assessment)
        return stored

    def _flush_duplicates(self, deduplicator: Deduplicator) -> None:
        records = deduplicator.drain_records()
        if not records:
            return
        try:
            self.store.record_duplicates(records)
        except Exception as e:
            logger.error(f"Could not record {len(records)} duplicate log(s): {e}")

    # ========================================================================
    # FINALIZATION
    # ========================================================================

    def _finish(
        self,
        log: RunLog,
        status: RunStatus,
        counters: RunCounters,
        reporter: ProgressReporter,
        started: float,
        run_logger: logging.LoggerAdapter,
    ) -> RunStatus:
        """
        Write the terminal progress entry and the terminal RunLog status.

        A run whose terminal entry was refused has been cancelled from outside
        this process; it ends as `cancelled` and only its counters are written.

        Returns:
            The status the run ended with
        """
        try:
            self._report_terminal(status, counters, reporter)
        except Exception as e:
            run_logger.error(f"Could not write terminal progress entry: {e}")

        if reporter.ended_elsewhere and status != RunStatus.CANCELLED:
            status = RunStatus.CANCELLED
            if CANCELLED_MESSAGE not in counters.errors:
                counters.errors.append(CANCELLED_MESSAGE)

        final = log.model_copy(
            update={
                "status": status,
                "completed_at": datetime.now(UTC),
                "duration_ms": int((self._clock() - started) * 1000),
                "events_found": counters.found,
                "events_imported": counters.imported,
                "duplicates_skipped": counters.duplicates,
                "errors": list(counters.errors),
            }
        )
        try:
            if not self.store.finalize_run_log(final):
                run_logger.warning("Run log was already finalized elsewhere")
                self.store.update_run_counts(final)
        except Exception as e:
            counters.errors.append(f"Could not finalize run log: {e}")
            run_logger.error(f"Could not finalize run log: {e}", exc_info=True)

        run_logger.info(
            f"Run {status.value}: found={counters.found} imported={counters.imported} "
            f"duplicates={counters.duplicates} errors={len(counters.errors)}"
        )
        return status

    def _report_terminal(
        self, status: RunStatus, counters: RunCounters, reporter: ProgressReporter
    ) -> None:
        stats = counters.stats()
        if status in (RunStatus.SUCCESS, RunStatus.PARTIAL):
            reporter.complete(
                f"Done: {counters.imported} imported, {counters.duplicates} duplicates skipped",
                metadata=stats,
            )
        elif status == RunStatus.CANCELLED:
            reporter.fail(CANCELLED_MESSAGE, metadata={**stats, "cancelled": True})
        else:
            reporter.fail(counters.errors[-1] if counters.errors else "Run failed", metadata=stats)

    # ========================================================================
    # RUNNING PROCESSES
    # ========================================================================

    def list_running(self) -> list[RunLog]:
        return self.store.list_run_logs(RunStatus.RUNNING)

    def cancel_running(self) -> list[RunLog]:
        """
        Cancel every run still marked `running`.

        Runs owned by this process are signalled and finalize themselves.
        Rows without a live owner here get a `failed` entry and are finalized
        as `cancelled`; an owner elsewhere notices on its next record.

        Returns:
            The RunLogs that were running when the call was made
        """
        with self.registry.exclusive():
            running = self.list_running()
            for log in running:
                if self.registry.cancel(log.id):
                    continue
                self._cancel_orphan(log)
        if running:
            self.logger.info(f"Cancelled {len(running)} running process(es)")
        return running

    def _cancel_orphan(self, log: RunLog) -> None:
        entry = ProgressReporter(self.store, log.id).fail(
            CANCELLED_MESSAGE, metadata={"cancelled": True}
        )
        if entry is None:
            # the run ended on its own first
            return
        completed_at = datetime.now(UTC)
        finalized = self.store.finalize_run_log(
            log.model_copy(
                update={
                    "status": RunStatus.CANCELLED,
                    "completed_at": completed_at,
                    "duration_ms": int((completed_at - log.started_at).total_seconds() * 1000),
                    "errors": [*log.errors, CANCELLED_MESSAGE],
                }
            )
        )
        if finalized:
            self.logger.warning(f"Finalized orphaned run {log.id} ({log.scraper_name}) as cancelled")


async def _next_record(records: AsyncIterator[RawEvent]) -> RawEvent:
    return await anext(records)
