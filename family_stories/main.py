"""Main FastAPI application."""
import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from family_stories.api import books, calls, health
from family_stories.api.webhooks import retell
from family_stories.core.config import settings
from family_stories.core.dependencies import (
    build_dispatcher,
    close_clients,
    get_blob_storage,
    get_document_store,
)
from family_stories.core.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    get_document_store().initialize()
    get_blob_storage().initialize()

    dispatch_task = None
    if settings.dispatch_enabled:
        dispatcher = build_dispatcher()
        dispatch_task = asyncio.create_task(
            dispatcher.run_forever(settings.dispatch_interval_seconds)
        )
        logger.info(
            f"[STARTUP] Scheduled call dispatch every {settings.dispatch_interval_seconds}s"
        )
    else:
        logger.info("[STARTUP] Scheduled call dispatch disabled")

    yield

    # Shutdown
    if dispatch_task is not None:
        dispatch_task.cancel()
        try:
            await dispatch_task
        except asyncio.CancelledError:
            pass
    await close_clients()
    logger.info("[SHUTDOWN] Clients closed")


app = FastAPI(
    title="Family Stories",
    description="Voice-interview backend that turns phone calls into family stories and books",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",")],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(retell.router, tags=["webhooks"])
app.include_router(calls.router, tags=["calls"])
app.include_router(books.router, tags=["books"])


@app.get("/")
async def root():
    return {"message": "Family Stories API", "version": "0.1.0"}


def main():
    """Run the application"""
    uvicorn.run(
        "family_stories.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
