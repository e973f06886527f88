"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import snapshots, stream
from app.config import settings
from app.core.broadcaster import create_broadcaster
from app.core.metro_client import MetroClient
from app.core.poller import MetroPoller
from app.core.scheduler import create_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    broadcaster = create_broadcaster(settings)
    await broadcaster.connect()

    # Wire up API modules
    snapshots.broadcaster = broadcaster
    stream.broadcaster = broadcaster

    client = None
    scheduler = None
    if settings.ingestor_enabled:
        client = MetroClient(settings)
        poller = MetroPoller(client, broadcaster, settings)
        scheduler = create_scheduler(poller, settings)
        scheduler.start()
        logger.info("Metro Monitor started - polling every %dms", settings.poll_interval_ms)
    elif broadcaster.enabled:
        # Snapshots come from an ingestor in another process
        broadcaster.start_relay()
        logger.info("Metro Monitor started in viewer mode - relaying %s", settings.redis_channel)

    yield

    # Shutdown
    if scheduler:
        scheduler.shutdown(wait=False)
    if client:
        await client.close()
    await broadcaster.close()
    logger.info("Metro Monitor shut down")


app = FastAPI(
    title="Lisbon Metro Monitor",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(snapshots.router)
app.include_router(stream.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
