"""Health check and environment endpoints."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from avorch.api.deps import get_orchestrator
from avorch.api.schemas import TempDirResponse
from avorch.jobs.orchestrator import OperationOrchestrator

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return the health status of the application."""
    from avorch import __version__

    return HealthResponse(status="healthy", version=__version__)


@router.get("/api/v1/temp-dir", response_model=TempDirResponse)
async def get_temp_dir(
    orch: OperationOrchestrator = Depends(get_orchestrator),
) -> TempDirResponse:
    """Root directory for intermediate files."""
    return TempDirResponse(temp_dir=str(orch.resources.root.resolve()))
