"""Main entry point for the avorch server."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from avorch.api.routes import health, media, operations
from avorch.config import configure_logging, settings
from avorch.jobs.events import LoggingSink
from avorch.jobs.orchestrator import OperationOrchestrator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the orchestrator on startup; cancel work and drop temp files on shutdown."""
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        settings.ensure_directories()
        orchestrator = OperationOrchestrator.from_settings(settings, sink=LoggingSink())
        app.state.orchestrator = orchestrator
    try:
        yield
    finally:
        await orchestrator.shutdown()


def create_app(orchestrator: OperationOrchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="avorch",
        description="Media editing operations over ffmpeg",
        version="0.1.0",
        lifespan=lifespan,
    )
    if orchestrator is not None:
        app.state.orchestrator = orchestrator

    app.include_router(health.router)
    app.include_router(operations.router)
    app.include_router(media.router)

    return app


app = create_app()


def main() -> None:
    """Run the application."""
    configure_logging()
    settings.ensure_directories()
    uvicorn.run(
        "avorch.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
