"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from asset_registry.api.routes import assets
from asset_registry.core.config import Settings, configure_logging
from asset_registry.core.database import setup_db_session
from asset_registry.services.blockchain.chain_reader import ChainReader
from asset_registry.services.blockchain.subscription import EventSubscription
from asset_registry.services.sync.engine import SyncEngine
from asset_registry.services.sync.ledger import SqlLedger
from asset_registry.uow import create_uow_factory

logger = structlog.get_logger()

RESTART_DELAY = 1  # Fixed 1 second delay between restarts


def create_resilient_worker(
    coro_factory: Callable[[], Awaitable[None]],
    worker_name: str,
    shutdown_event: asyncio.Event,
    tasks: set[asyncio.Task],
) -> asyncio.Task:
    """Create a background task that is restarted if it crashes.

    Args:
        coro_factory: Zero-argument callable returning the worker coroutine
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown
        tasks: Set holding every live task (initial and restarted) for shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """

    def start() -> asyncio.Task:
        task = asyncio.create_task(coro_factory())
        tasks.add(task)
        task.add_done_callback(on_worker_done)
        return task

    def on_worker_done(task: asyncio.Task):
        tasks.discard(task)

        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            start()

        restart_task = asyncio.create_task(restart_worker())
        tasks.add(restart_task)
        restart_task.add_done_callback(tasks.discard)

    return start()


def build_engine(settings: Settings, uow_factory) -> SyncEngine:
    """Wire chain reader, ledger and engine from settings."""
    return SyncEngine(
        reader=ChainReader.from_settings(settings),
        ledger=SqlLedger(uow_factory),
        interval_seconds=settings.sync_interval_seconds,
        confirmations=settings.sync_confirmations,
        failure_log_every=settings.failure_log_every,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, build the session factory and sync engine,
      start the backfill loop (and the live subscription when WS_RPC_URL is set)
    - Shutdown: Signal the engine to stop and wait for the running cycle to finish
    """
    settings = Settings()  # type: ignore[call-arg]

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    engine = build_engine(settings, uow_factory)

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.engine = engine

    subscription = None
    if settings.live_path_enabled:
        subscription = EventSubscription(settings.ws_rpc_url, settings.contract_address)
    else:
        logger.info("startup.live_path_disabled", reason="WS_RPC_URL not set")

    shutdown_event = asyncio.Event()
    tasks: set[asyncio.Task] = set()

    create_resilient_worker(
        lambda: engine.run(
            shutdown_event, resume_from_checkpoint=settings.sync_resume_from_checkpoint
        ),
        "sync",
        shutdown_event,
        tasks,
    )
    if subscription is not None:
        create_resilient_worker(
            lambda: engine.run_live(subscription, shutdown_event),
            "live",
            shutdown_event,
            tasks,
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        contract=settings.contract_address,
        live_path=settings.live_path_enabled,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    # Loops observe the stop signal between cycles, so in-flight writes complete
    await asyncio.gather(*list(tasks), return_exceptions=True)
    logger.info("application.stopped", watermark=engine.watermark)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Asset Registry Indexer API",
        description="Indexed asset registrations and ownership transfers",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(assets.router)  # Router has prefix="/api" in definition

    return app


# Create app instance for uvicorn
app = create_app()
