"""Request and response schemas for the avorch API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from avorch.jobs.models import Operation


# ------------------------------------------------------------------
# Operation responses
# ------------------------------------------------------------------


class OperationCreateResponse(BaseModel):
    operation_id: str
    state: str
    type: str


class OperationListItem(BaseModel):
    operation_id: str
    type: str
    state: str
    progress: float = 0.0
    created_at: datetime


class OperationStatusResponse(BaseModel):
    operation_id: str
    type: str
    state: str
    progress: float = 0.0
    message: str = ""
    parent_id: str | None = None
    segment_id: str | None = None
    children: list[str] = Field(default_factory=list)
    result: dict[str, Any] | None = None
    error: str | None = None
    error_kind: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_operation(cls, op: Operation, children: list[str] | None = None) -> OperationStatusResponse:
        return cls(
            operation_id=op.id,
            type=op.type.value,
            state=op.state.value,
            progress=op.progress,
            message=op.message,
            parent_id=op.parent_id,
            segment_id=op.segment_id,
            children=children or [],
            result=op.result.as_dict() if op.result is not None else None,
            error=op.error,
            error_kind=op.error_kind,
            created_at=op.created_at,
            completed_at=op.completed_at,
        )


class CancelResponse(BaseModel):
    operation_id: str
    cancelled: bool
    state: str


# ------------------------------------------------------------------
# Media / misc
# ------------------------------------------------------------------


class MediaInfoResponse(BaseModel):
    path: str
    file_name: str
    duration: float
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None


class TempDirResponse(BaseModel):
    temp_dir: str
