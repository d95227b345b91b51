"""Operation endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from avorch.api.deps import get_orchestrator
from avorch.api.schemas import (
    CancelResponse,
    OperationCreateResponse,
    OperationListItem,
    OperationStatusResponse,
)
from avorch.errors import CompositionError, ValidationError
from avorch.jobs.models import Operation
from avorch.jobs.orchestrator import OperationOrchestrator
from avorch.models.progress import AggregateProgress, ProgressEvent

router = APIRouter(prefix="/api/v1/operations", tags=["operations"])


def _require(orch: OperationOrchestrator, operation_id: str) -> Operation:
    op = orch.get(operation_id)
    if op is None:
        raise HTTPException(status_code=404, detail="Operation not found")
    return op


# ------------------------------------------------------------------
# POST: submit (202 Accepted)
# ------------------------------------------------------------------


@router.post("/{operation_type}", response_model=OperationCreateResponse, status_code=202)
async def submit_operation(
    operation_type: str,
    params: dict[str, Any] = Body(..., description="Operation parameters"),
    orch: OperationOrchestrator = Depends(get_orchestrator),
) -> OperationCreateResponse:
    try:
        operation_id = orch.submit(operation_type, params)
    except (ValidationError, CompositionError) as e:
        raise HTTPException(status_code=422, detail=e.describe()) from e
    op = orch.get(operation_id)
    return OperationCreateResponse(operation_id=op.id, state=op.state.value, type=op.type.value)


@router.post("/{operation_id}/cancel", response_model=CancelResponse)
async def cancel_operation(
    operation_id: str,
    orch: OperationOrchestrator = Depends(get_orchestrator),
) -> CancelResponse:
    op = _require(orch, operation_id)
    cancelled = await orch.cancel(operation_id)
    return CancelResponse(operation_id=op.id, cancelled=cancelled, state=op.state.value)


# ------------------------------------------------------------------
# GET: query operations
# ------------------------------------------------------------------


@router.get("", response_model=list[OperationListItem])
async def list_operations(
    orch: OperationOrchestrator = Depends(get_orchestrator),
) -> list[OperationListItem]:
    return [
        OperationListItem(
            operation_id=op.id,
            type=op.type.value,
            state=op.state.value,
            progress=op.progress,
            created_at=op.created_at,
        )
        for op in orch.list_operations()
    ]


@router.get("/{operation_id}", response_model=OperationStatusResponse)
async def get_operation(
    operation_id: str,
    orch: OperationOrchestrator = Depends(get_orchestrator),
) -> OperationStatusResponse:
    op = _require(orch, operation_id)
    children = [child.id for child in orch.children(operation_id)]
    return OperationStatusResponse.from_operation(op, children)


@router.get("/{operation_id}/events", response_model=list[ProgressEvent])
async def get_operation_events(
    operation_id: str,
    orch: OperationOrchestrator = Depends(get_orchestrator),
) -> list[ProgressEvent]:
    _require(orch, operation_id)
    return orch.events(operation_id)


@router.get("/{operation_id}/progress", response_model=AggregateProgress)
async def get_operation_progress(
    operation_id: str,
    orch: OperationOrchestrator = Depends(get_orchestrator),
) -> AggregateProgress:
    _require(orch, operation_id)
    return orch.progress(operation_id)
