"""
FastAPI Watchlist Screening API Server

Provides REST API endpoints for batch screening and match review.
Matches are kept in memory, or in the database when DATABASE_URL is set.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from fastapi import FastAPI, HTTPException, UploadFile, File, Query, Depends, Security
from fastapi.security import APIKeyHeader

from api.models import (
    BatchScreeningRequest,
    BatchScreeningResponse,
    ReviewRequest,
    ReviewOutcomeResponse,
    MatchResponse,
    ListInfoResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from audit_logger import get_audit_logger
from config_manager import get_config, ConfigManager, ConfigurationError
from record_ingestor import parse_csv, parse_records
from review import InMemoryMatchStore, MatchStore, ReviewOutcome, ReviewWorkflow
from screener import ScreeningOptions, WatchlistScreener
from watchlist import load_snapshot

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
DATA_DIR = os.getenv("DATA_DIR", "")
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))
CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yaml")
API_KEY = os.getenv("API_KEY", "")  # Required for authenticated endpoints

# Global state
_screener: Optional[WatchlistScreener] = None
_match_store: Optional[MatchStore] = None
_workflow: Optional[ReviewWorkflow] = None
_config: Optional[ConfigManager] = None
_startup_time: Optional[datetime] = None
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="screening")  # Screening and storage calls

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    if not API_KEY:
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_screener() -> WatchlistScreener:
    """Dependency to get the screener instance."""
    if _screener is None:
        raise HTTPException(
            status_code=503, detail="Screener not initialized. Service is starting up."
        )
    return _screener


def get_match_store() -> MatchStore:
    if _match_store is None:
        raise HTTPException(status_code=503, detail="Match store not initialized.")
    return _match_store


def get_workflow() -> ReviewWorkflow:
    if _workflow is None:
        raise HTTPException(status_code=503, detail="Review workflow not initialized.")
    return _workflow


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def configure(screener: WatchlistScreener, store: MatchStore, config: ConfigManager) -> None:
    """Install the screener, match store and review workflow the endpoints use."""
    global _screener, _match_store, _workflow, _config
    _config = config
    _screener = screener
    _match_store = store
    _workflow = ReviewWorkflow(store, listeners=[get_audit_logger()])


# Create FastAPI application
app = FastAPI(
    title="Watchlist Screening API",
    description="Batch screening against sanctions, PEP and adverse-media lists, with match review",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


def _build_services(config: ConfigManager):
    """Load the snapshot and pick the match store (blocking)."""
    if os.getenv("DATABASE_URL"):
        from database.connection import init_db
        from database.match_store import SqlMatchStore
        from database.repositories import WatchlistRepository

        provider = init_db()
        provider.create_tables()
        with provider.session_scope() as session:
            snapshot = WatchlistRepository(session).load_snapshot()
        store: MatchStore = SqlMatchStore(provider)
        logger.info("✓ Using database match store")
    else:
        snapshot = load_snapshot(DATA_DIR or None, config)
        store = InMemoryMatchStore()
        logger.info("✓ Using in-memory match store")
    return WatchlistScreener(snapshot, config), store


@app.on_event("startup")
async def startup():
    """Load watchlist data and set up review on startup."""
    global _startup_time

    logger.info("🚀 Starting Watchlist Screening API...")
    start_time = time.time()

    try:
        config = get_config(CONFIG_PATH)
        logger.info(f"✓ Configuration loaded from {CONFIG_PATH}")

        loop = asyncio.get_event_loop()
        screener, store = await loop.run_in_executor(_executor, _build_services, config)
        configure(screener, store, config)

        _startup_time = datetime.now(timezone.utc)
        logger.info(
            "✓ API ready: %d entries loaded in %.2f seconds",
            len(screener.snapshot), time.time() - start_time
        )

    except ConfigurationError as e:
        logger.error(f"✗ Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"✗ Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Watchlist Screening API...")
    if os.getenv("DATABASE_URL"):
        from database.connection import close_db
        close_db()


def _register(result, options: ScreeningOptions, store: MatchStore) -> dict:
    """Store a screened batch and return its response body with match ids (blocking)."""
    batch_id = store.register_batch(result, options.to_dict())
    summary = result.summary.to_dict()
    get_audit_logger().log_batch_screened(batch_id, summary, options.lists)
    return {"batchId": batch_id, **store.get_batch(batch_id).to_dict()}


_BATCH_RESPONSES = {
    200: {"model": BatchScreeningResponse, "description": "Batch screened"},
    401: {"model": ErrorResponse, "description": "Missing API key"},
    403: {"model": ErrorResponse, "description": "Invalid API key"},
    422: {"model": ErrorResponse, "description": "Invalid records or options"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


@app.post(
    "/api/v1/screen/batch",
    response_model=BatchScreeningResponse,
    responses=_BATCH_RESPONSES,
    summary="Screen a batch of records",
    description="Screen JSON party records against the selected watchlists",
)
async def screen_batch(
    request: BatchScreeningRequest,
    screener: WatchlistScreener = Depends(get_screener),
    store: MatchStore = Depends(get_match_store),
    config: ConfigManager = Depends(get_config_instance),
    api_key: str = Depends(verify_api_key),
):
    """Screen a batch and register its matches for review.

    Requires API key authentication via X-API-Key header.
    """
    records = parse_records([r.model_dump() for r in request.records], config)
    options = ScreeningOptions.from_dict(
        request.options.to_options_dict() if request.options else None, config
    )

    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(_executor, partial(screener.run_batch, records, options))
    return await loop.run_in_executor(_executor, _register, result, options, store)


@app.post(
    "/api/v1/screen/batch/csv",
    response_model=BatchScreeningResponse,
    responses={
        **_BATCH_RESPONSES,
        400: {"model": ErrorResponse, "description": "Unreadable file"},
        413: {"model": ErrorResponse, "description": "File too large"},
    },
    summary="Screen a CSV batch",
    description="Upload a CSV with a name column (type, dob, country, id, aliases optional)",
)
async def screen_batch_csv(
    file: UploadFile = File(..., description="CSV file with a header row"),
    threshold: Optional[float] = Query(default=None, description="Match threshold in [0, 1]"),
    lists: Optional[str] = Query(default=None, description="Comma-separated list codes"),
    include_aliases: Optional[bool] = Query(default=None, alias="includeAliases"),
    check_dob: Optional[bool] = Query(default=None, alias="checkDob"),
    check_country: Optional[bool] = Query(default=None, alias="checkCountry"),
    screener: WatchlistScreener = Depends(get_screener),
    store: MatchStore = Depends(get_match_store),
    config: ConfigManager = Depends(get_config_instance),
    api_key: str = Depends(verify_api_key),
):
    """Screen an uploaded CSV batch.

    Requires API key authentication via X-API-Key header.
    """
    max_size_bytes = MAX_UPLOAD_SIZE_MB * 1024 * 1024
    content = await file.read(max_size_bytes + 1)
    if len(content) > max_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {MAX_UPLOAD_SIZE_MB}MB",
        )

    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "UNREADABLE_FILE",
                "message": "CSV file must be UTF-8 encoded",
                "field": "file",
                "suggestion": "Save the file as UTF-8 CSV",
            },
        )

    raw_options = {
        key: value
        for key, value in (
            ("threshold", threshold),
            ("lists", lists),
            ("includeAliases", include_aliases),
            ("checkDob", check_dob),
            ("checkCountry", check_country),
        )
        if value is not None
    }
    options = ScreeningOptions.from_dict(raw_options, config)
    records = parse_csv(text, config)

    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(_executor, partial(screener.run_batch, records, options))
    return await loop.run_in_executor(_executor, _register, result, options, store)


@app.get(
    "/api/v1/batches/{batch_id}",
    response_model=BatchScreeningResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown batch"}},
    summary="Get a screened batch",
    description="Current batch result, reflecting reviews made since screening",
)
async def get_batch(
    batch_id: str,
    store: MatchStore = Depends(get_match_store),
    api_key: str = Depends(verify_api_key),
):
    loop = asyncio.get_event_loop()
    batch = await loop.run_in_executor(_executor, store.get_batch, batch_id)
    return {"batchId": batch_id, **batch.to_dict()}


@app.get(
    "/api/v1/matches/{match_id}",
    response_model=MatchResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown match"}},
    summary="Get a match",
)
async def get_match(
    match_id: str,
    store: MatchStore = Depends(get_match_store),
    api_key: str = Depends(verify_api_key),
):
    loop = asyncio.get_event_loop()
    match = await loop.run_in_executor(_executor, store.get_match, match_id)
    return match.to_dict()


def _review_response(outcome: ReviewOutcome, actor: str) -> dict:
    if not outcome.applied:
        get_audit_logger().log_review_noop(outcome.match_id, actor, outcome.status.value)
    return outcome.to_dict()


_REVIEW_RESPONSES = {
    200: {"model": ReviewOutcomeResponse, "description": "Review applied or already resolved"},
    404: {"model": ErrorResponse, "description": "Unknown match"},
    422: {"model": ErrorResponse, "description": "Missing reviewer"},
}


@app.post(
    "/api/v1/matches/{match_id}/confirm",
    response_model=ReviewOutcomeResponse,
    responses=_REVIEW_RESPONSES,
    summary="Confirm a match",
    description="Resolve a pending match as a true hit. Resolved matches are left unchanged.",
)
async def confirm_match(
    match_id: str,
    request: ReviewRequest,
    workflow: ReviewWorkflow = Depends(get_workflow),
    api_key: str = Depends(verify_api_key),
):
    loop = asyncio.get_event_loop()
    outcome = await loop.run_in_executor(
        _executor, partial(workflow.confirm_match, match_id, request.actor, request.notes)
    )
    return _review_response(outcome, request.actor)


@app.post(
    "/api/v1/matches/{match_id}/false-positive",
    response_model=ReviewOutcomeResponse,
    responses=_REVIEW_RESPONSES,
    summary="Mark a match as false positive",
    description="Resolve a pending match as not the listed party. Resolved matches are left unchanged.",
)
async def mark_false_positive(
    match_id: str,
    request: ReviewRequest,
    workflow: ReviewWorkflow = Depends(get_workflow),
    api_key: str = Depends(verify_api_key),
):
    loop = asyncio.get_event_loop()
    outcome = await loop.run_in_executor(
        _executor, partial(workflow.mark_false_positive, match_id, request.actor, request.notes)
    )
    return _review_response(outcome, request.actor)


@app.get(
    "/api/v1/lists",
    response_model=list[ListInfoResponse],
    summary="Available lists",
    description="Catalogued lists with the number of loaded entries",
)
async def available_lists(
    screener: WatchlistScreener = Depends(get_screener),
    api_key: str = Depends(verify_api_key),
):
    return screener.available_lists()


@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service health and data status",
)
async def health_check(config: ConfigManager = Depends(get_config_instance)):
    """Return health status including entry counts. Always returns HTTP 200."""
    if _screener is None:
        return HealthResponse(
            status="starting",
            entries_loaded=0,
            algorithm_version=config.algorithm.version,
        )

    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    return HealthResponse(
        status="healthy",
        entries_loaded=len(_screener.snapshot),
        lists=[ListInfoResponse(**item) for item in _screener.available_lists()],
        algorithm_version=config.algorithm.version,
        storage="memory" if isinstance(_match_store, InMemoryMatchStore) else "database",
        uptime_seconds=uptime_seconds,
    )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
