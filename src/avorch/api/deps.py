"""FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from avorch.jobs.orchestrator import OperationOrchestrator


def get_orchestrator(request: Request) -> OperationOrchestrator:
    """Dependency that provides the orchestrator created at startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise RuntimeError("Orchestrator not initialized; the app lifespan has not run")
    return orchestrator
