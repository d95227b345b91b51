"""Operation orchestration."""

from avorch.jobs.aggregator import ProgressAggregator
from avorch.jobs.events import CallbackSink, EventSink, EventStream, LoggingSink, NullSink
from avorch.jobs.models import Operation, OperationResult, OperationState, OperationType
from avorch.jobs.orchestrator import OperationOrchestrator
from avorch.jobs.resources import ResourceScope, TempResource, TempResourceRegistry

__all__ = [
    "CallbackSink",
    "EventSink",
    "EventStream",
    "LoggingSink",
    "NullSink",
    "Operation",
    "OperationOrchestrator",
    "OperationResult",
    "OperationState",
    "OperationType",
    "ProgressAggregator",
    "ResourceScope",
    "TempResource",
    "TempResourceRegistry",
]
