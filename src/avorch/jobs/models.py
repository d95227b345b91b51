"""Operation domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from avorch.errors import OperationStateError


class OperationType(str, Enum):
    """Kinds of request the orchestrator accepts."""

    TRIM = "trim"
    MERGE = "merge"
    EXTRACT_AUDIO = "extract-audio"
    REPLACE_AUDIO = "replace-audio"
    REMOVE_AUDIO = "remove-audio"
    GENERATE_THUMBNAIL = "generate-thumbnail"
    PROBE = "probe"


class OperationState(str, Enum):
    """Lifecycle of an operation. Transitions only move forward."""

    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.COMPLETED, OperationState.FAILED, OperationState.CANCELLED)


_ALLOWED: dict[OperationState, frozenset[OperationState]] = {
    OperationState.PENDING: frozenset(
        {OperationState.STARTING, OperationState.FAILED, OperationState.CANCELLED}
    ),
    OperationState.STARTING: frozenset(
        {OperationState.RUNNING, OperationState.FAILED, OperationState.CANCELLED}
    ),
    OperationState.RUNNING: frozenset(
        {OperationState.COMPLETED, OperationState.FAILED, OperationState.CANCELLED}
    ),
    OperationState.COMPLETED: frozenset(),
    OperationState.FAILED: frozenset(),
    OperationState.CANCELLED: frozenset(),
}


@dataclass
class OperationResult:
    """Result of a completed operation."""

    output_path: Path | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        """Result descriptor: success flag, output path and extra fields."""
        return {
            "success": True,
            "output_path": str(self.output_path) if self.output_path else None,
            **self.data,
        }


@dataclass
class Operation:
    """A logical request tracked by the orchestrator."""

    id: str = field(default_factory=lambda: str(uuid4()))
    type: OperationType = OperationType.PROBE
    state: OperationState = OperationState.PENDING
    progress: float = 0.0
    message: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    parent_id: str | None = None
    segment_id: str | None = None
    keep_partial_output: bool = False
    result: OperationResult | None = None
    error: str | None = None
    error_kind: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, new_state: OperationState) -> None:
        """Move to *new_state*.

        Raises:
            OperationStateError: If the move is not a forward transition
        """
        if new_state is self.state:
            return
        if new_state not in _ALLOWED[self.state]:
            raise OperationStateError(
                f"Illegal transition {self.state.value} -> {new_state.value}",
                operation_id=self.id,
                segment_id=self.segment_id,
            )
        self.state = new_state
        if new_state.is_terminal:
            self.completed_at = datetime.now(timezone.utc)
