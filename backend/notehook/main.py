"""
notehook API
FastAPI application relaying Misskey webhook events to Discord webhooks.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from notehook import config
from notehook.routers import relay
from notehook.services.dedup import DedupCache
from notehook.services.delivery import build_http_client

# Configure logging to output to console
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Own the state shared by all requests.

    The dedup cache and the outbound HTTP client live for the whole process
    and are handed to the relay endpoint through FastAPI dependencies
    (see routers.relay.get_dedup_cache / get_http_client).
    """
    app.state.dedup_cache = DedupCache(config.DEDUP_CAPACITY)
    app.state.http_client = build_http_client(
        user_agent=config.USER_AGENT,
        timeout=config.OUTBOUND_TIMEOUT_SECONDS,
    )
    logger.info(
        "notehook %s started (dedup capacity %d, User-Agent %r)",
        config.VERSION,
        config.DEDUP_CAPACITY,
        config.USER_AGENT,
    )
    try:
        yield
    finally:
        await app.state.http_client.aclose()


app = FastAPI(
    title="notehook",
    description="Relays Misskey webhook events to Discord webhooks",
    version=config.VERSION,
    lifespan=lifespan,
)

app.include_router(relay.router, tags=["relay"])


@app.get("/")
async def root():
    return {"message": "notehook", "version": config.VERSION}


@app.get("/health")
async def health():
    return {"status": "ok", "dedup_entries": len(app.state.dedup_cache)}
