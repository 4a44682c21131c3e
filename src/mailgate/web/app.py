"""FastAPI application for mailgate.

Creates the FastAPI app with:
- Lifespan context manager for dependency initialization and scheduler
- API router
- 503 handler for ledger store failures

The expiry watcher and the cache sweeper run as background jobs on an
AsyncIOScheduler sharing uvicorn's event loop.

Usage:
    from mailgate.web.app import create_app

    app = create_app()
    # Run with: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailgate.cache.list_cache import ScopedResultCache
from mailgate.cache.sweeper import CacheSweeper
from mailgate.config_schema import AppConfig
from mailgate.core.errors import StoreUnavailableError
from mailgate.core.logging import get_logger
from mailgate.db.store import DatabaseStore
from mailgate.notify import build_notifier
from mailgate.safety.expiry import ExpiryWatcher
from mailgate.safety.gate import ConfirmationGate
from mailgate.safety.ledger import ExecutionLedger

logger = get_logger(__name__)


@dataclass
class Services:
    """Everything built from one config + store."""

    config: AppConfig
    store: DatabaseStore
    ledger: ExecutionLedger
    gate: ConfirmationGate
    list_cache: ScopedResultCache
    watcher: ExpiryWatcher
    sweeper: CacheSweeper


async def build_services(config: AppConfig) -> Services:
    """Open the store and wire the ledger, gate, cache and background workers.

    Raises:
        DatabaseError: If the store cannot be initialized
    """
    store = DatabaseStore(config.database.path)
    await store.initialize()
    return Services(
        config=config,
        store=store,
        ledger=ExecutionLedger(store, config),
        gate=ConfirmationGate(store, config),
        list_cache=ScopedResultCache(store, config),
        watcher=ExpiryWatcher(store, build_notifier(config)),
        sweeper=CacheSweeper(store, config),
    )


def _clear_state(app: FastAPI) -> None:
    app.state.store = None
    app.state.ledger = None
    app.state.gate = None
    app.state.list_cache = None
    app.state.watcher = None
    app.state.sweeper = None
    app.state.scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize dependencies on startup, clean up on shutdown.

    On startup:
    1. Load config
    2. Initialize database and services
    3. Start APScheduler

    On shutdown:
    - Stop APScheduler
    - Checkpoint the WAL
    """
    from mailgate.config import get_config
    from mailgate.engine.scheduler import build_scheduler

    _clear_state(app)

    # 1. Load config
    try:
        config = get_config()
    except Exception as e:
        logger.error("config_load_failed", error=str(e))
        app.state.config = None
        yield
        return

    app.state.config = config

    # 2. Initialize database and services
    try:
        services = await build_services(config)
    except Exception as e:
        # Ledger routes answer 503 until the store is fixed; nothing runs unguarded
        logger.error("store_init_failed", db_path=config.database.path, error=str(e))
        yield
        return

    app.state.store = services.store
    app.state.ledger = services.ledger
    app.state.gate = services.gate
    app.state.list_cache = services.list_cache
    app.state.watcher = services.watcher
    app.state.sweeper = services.sweeper

    # 3. Start APScheduler
    scheduler = build_scheduler(services.watcher, services.sweeper, config)
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info("scheduler_started")

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    logger.info("scheduler_stopped")
    await services.store.checkpoint_wal()


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    """Ledger unreadable: refuse rather than guess."""
    logger.error("store_unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Execution store unavailable"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    from mailgate.web.routes import VERSION, api_router

    app = FastAPI(
        title="mailgate",
        description="Confirmation gate and list cache for a chat mail assistant",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    app.include_router(api_router)

    return app
