"""Media Uploader Application.

Main entry point of the uploader service.

Modules:
    - files: validation, naming and shared schemas
    - media: resize/crop geometry and the image transform service
    - storage: local disk and S3 backends
    - uploads: temp materializer, upload orchestrator and HTTP endpoints
    - expiry: DuckDB-backed deletion schedule for temporal uploads
    - hooks: typed extension points

Observers registered on ``hooks`` before startup are wired into every
service built by the lifespan.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import duckdb
from fastapi import FastAPI

from uploader.config import get_config
from uploader.expiry.service import ExpiryService
from uploader.hooks.registry import HookRegistry
from uploader.storage.base import StorageBackend
from uploader.uploads.orchestrator import create_orchestrator
from uploader.uploads.router import router as uploads_router, set_orchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# botocore.auth logs the full SigV4 canonical request, including
# x-amz-security-token.  httpx/httpcore log every connection and PIL logs
# every decoded chunk at DEBUG.
for _noisy in (
    "botocore",
    "boto3",
    "urllib3",
    "httpx",
    "httpcore",
    "PIL",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

hooks = HookRegistry()


async def sweep_expired(expiry: ExpiryService, storage: StorageBackend, interval: float) -> None:
    """Delete expired temporal uploads every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(expiry.sweep, storage)
        except duckdb.Error as exc:
            logger.warning("Expiry sweep failed: %s", exc)
        except Exception:
            # keep sweeping; one bad pass must not stop expiry for the process
            logger.exception("Unexpected error in expiry sweep")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    expiry: Optional[ExpiryService] = None
    if config.expiry.enabled:
        expiry = ExpiryService.get_instance(config.expiry.db_path)
        logger.info("Expiry schedule ready: db=%s", config.expiry.db_path)
    else:
        logger.info("Expiry disabled; temporal uploads will not be deleted")

    orchestrator = create_orchestrator(config, hooks=hooks, scheduler=expiry)
    set_orchestrator(orchestrator)
    logger.info(
        "Uploader ready: storage=%s tmp_dir=%s",
        orchestrator.storage.name,
        config.uploads.tmp_dir,
    )

    sweeper: Optional[asyncio.Task] = None
    if expiry is not None:
        sweeper = asyncio.create_task(
            sweep_expired(expiry, orchestrator.storage, config.expiry.sweep_interval_seconds)
        )

    yield  # Application runs here

    # Shutdown
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    set_orchestrator(None)
    ExpiryService.reset_instance()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Media Uploader API",
    description="Validated file uploads with image versions, thumbnails and expiry",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(uploads_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
