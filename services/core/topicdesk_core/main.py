"""Topicdesk Core API - Main Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from topicdesk_core.api.routes import webhook as webhook_routes
from topicdesk_core.config import get_settings
from topicdesk_core.observability import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="topicdesk-core",
    )
    app.state.settings = settings
    yield
    # Shutdown


app = FastAPI(
    title="Topicdesk Core API",
    description="Support relay between private chats and per-user forum threads",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(webhook_routes.router)


@app.get("/healthz")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True, "service": "topicdesk-core"}


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "name": "Topicdesk Core API",
        "version": "0.1.0",
        "status": "running",
    }
