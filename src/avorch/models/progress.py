"""Progress event models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ProgressStage(str, Enum):
    """Stage reported by a progress event."""

    STARTED = "started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({ProgressStage.COMPLETED, ProgressStage.ERROR, ProgressStage.CANCELLED})


class ProgressEvent(BaseModel):
    """One entry of an operation's progress stream."""

    model_config = ConfigDict(frozen=True)

    operation_id: str
    stage: ProgressStage
    percent: float = Field(0.0, ge=0.0, le=100.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    fps: float | None = None
    speed: float | None = None
    segment_id: str | None = None
    message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal


class AggregateProgress(BaseModel):
    """Combined view over several tracked operations."""

    percent: float = 0.0
    is_complete: bool = False
    has_error: bool = False
    tracked: int = 0
