"""
event_ingestion.main.

FastAPI control API for the Event Ingestion Engine, consumed by the admin UI.

Responsibilities
----------------
• Triggering ingestion runs (all sources or a named subset)
• Listing and cancelling running processes
• Serving run progress to pollers
• Health monitoring

Environment
-----------
DATABASE_URL selects the PostgreSQL store; without it runs are kept in memory,
which only makes sense for local development.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from event_ingestion.configs.settings import get_settings
from event_ingestion.ingestion.errors import UnknownSourceError
from event_ingestion.ingestion.orchestrator import IngestionOrchestrator
from event_ingestion.ingestion.progress import build_snapshot
from event_ingestion.monitoring.logging import LoggingOptions, setup_logging
from event_ingestion.schemas import CamelModel, RunSummary, TriggerInfo, TriggerType

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# APP INITIALIZATION
# ---------------------------------------------------------------------------


# Global orchestrator instance, built on first use
_ORCHESTRATOR: IngestionOrchestrator | None = None


def get_orchestrator() -> IngestionOrchestrator:
    """
    Get or initialize the orchestrator.

    Returns
    -------
    IngestionOrchestrator
        The process-wide orchestrator, wired from settings.
    """
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = IngestionOrchestrator.from_settings(get_settings())
    return _ORCHESTRATOR


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle app startup and shutdown events."""
    settings = get_settings()
    setup_logging(LoggingOptions(level=settings.LOG_LEVEL, json_logs=settings.JSON_LOGS))

    yield

    global _ORCHESTRATOR
    if _ORCHESTRATOR is not None:
        _ORCHESTRATOR.registry.cancel_all()
        _ORCHESTRATOR.store.close()
        _ORCHESTRATOR = None


app = FastAPI(
    title="Event Ingestion API",
    version="1.0.0",
    description="Control API for importing events from external sources.",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# ERRORS
# ---------------------------------------------------------------------------


class ApiError(Exception):
    """An error rendered as `{"error": ..., "details": ...}`."""

    def __init__(self, status_code: int, error: str, details: str | None = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    content = {"error": exc.error}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


# ---------------------------------------------------------------------------
# REQUEST / RESPONSE MODELS
# ---------------------------------------------------------------------------


class ScrapeRequest(CamelModel):
    """Body of POST /scrape."""

    user_email: str | None = None
    scraper_names: list[str] | None = None


class SourceInfo(CamelModel):
    name: str
    url: str
    adapter: str
    enabled: bool
    organizer_id: int | None = None


class SourceList(CamelModel):
    count: int
    sources: list[SourceInfo]


class CancelledProcess(CamelModel):
    id: int
    scraper_name: str
    started_at: datetime


class CancelResponse(CamelModel):
    message: str
    cancelled_count: int
    cancelled_processes: list[CancelledProcess]


class RunningProcess(CamelModel):
    id: int
    scraper_name: str
    started_at: datetime
    events_found: int
    events_imported: int


class RunningResponse(CamelModel):
    running_count: int
    processes: list[RunningProcess]


# ---------------------------------------------------------------------------
# HEALTH ENDPOINT
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Monitoring"])
def health_check() -> dict[str, str]:
    """
    Check API health.

    Returns
    -------
    dict
        Service status indicator.
    """
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# SCRAPE ENDPOINTS
# ---------------------------------------------------------------------------


@app.get("/scrape", response_model=SourceList, response_model_by_alias=True, tags=["Scrape"])
def list_sources(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> SourceList:
    """List configured sources, enabled or not."""
    sources = [
        SourceInfo(
            name=s.name,
            url=s.url,
            adapter=s.adapter,
            enabled=s.enabled,
            organizer_id=s.organizer_id,
        )
        for s in orchestrator.list_sources()
    ]
    return SourceList(count=len(sources), sources=sources)


@app.post("/scrape", response_model=RunSummary, response_model_by_alias=True, tags=["Scrape"])
async def run_scrape(
    body: ScrapeRequest | None = None,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> RunSummary:
    """
    Run all enabled sources, or only `scraperNames`.

    Returns
    -------
    RunSummary
        Per-source results. Returned even when sources fail.

    Raises
    ------
    ApiError
        400 for unknown source names or an empty selection.
    """
    body = body or ScrapeRequest()
    try:
        sources = orchestrator.select_sources(body.scraper_names)
    except UnknownSourceError as e:
        raise ApiError(400, "Unknown scrapers", str(e))
    if not sources:
        raise ApiError(400, "No scrapers to run")

    trigger = TriggerInfo(triggered_by=TriggerType.MANUAL, user_email=body.user_email)
    return await orchestrator.run_all(body.scraper_names, trigger=trigger)


@app.post(
    "/scrape/cancel",
    response_model=CancelResponse,
    response_model_by_alias=True,
    tags=["Scrape"],
)
def cancel_scrape(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> CancelResponse:
    """Cancel every running process. Calling it with nothing running is fine."""
    try:
        cancelled = orchestrator.cancel_running()
    except Exception as e:
        logger.error(f"Cancel failed: {e}", exc_info=True)
        raise ApiError(500, "Failed to cancel processes", str(e))

    if not cancelled:
        message = "No running scraping processes found"
    else:
        message = f"Successfully cancelled {len(cancelled)} scraping process(es)"
    return CancelResponse(
        message=message,
        cancelled_count=len(cancelled),
        cancelled_processes=[
            CancelledProcess(id=log.id, scraper_name=log.scraper_name, started_at=log.started_at)
            for log in cancelled
        ],
    )


@app.get(
    "/scrape/cancel",
    response_model=RunningResponse,
    response_model_by_alias=True,
    tags=["Scrape"],
)
def running_processes(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> RunningResponse:
    """Currently running processes, newest first."""
    try:
        running = orchestrator.list_running()
    except Exception as e:
        raise ApiError(500, "Failed to fetch running processes", str(e))

    running.sort(key=lambda log: log.started_at, reverse=True)
    return RunningResponse(
        running_count=len(running),
        processes=[
            RunningProcess(
                id=log.id,
                scraper_name=log.scraper_name,
                started_at=log.started_at,
                events_found=log.events_found,
                events_imported=log.events_imported,
            )
            for log in running
        ],
    )


@app.get("/scrape/{log_id}/progress", tags=["Scrape"])
def run_progress(
    log_id: int,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """
    Progress of one run.

    Parameters
    ----------
    log_id : int
        RunLog id returned in the run results.

    Raises
    ------
    ApiError
        404 when the run does not exist.
    """
    try:
        snapshot = build_snapshot(orchestrator.store, log_id)
    except Exception as e:
        raise ApiError(500, "Failed to fetch progress", str(e))
    if snapshot is None:
        raise ApiError(404, "Scraper log not found")
    return JSONResponse(snapshot.model_dump(mode="json", by_alias=True))
