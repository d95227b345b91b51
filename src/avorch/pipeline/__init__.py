"""Engine invocation: command lines, progress parsing and supervision."""

from avorch.pipeline.commands import EngineCommand, EngineInput
from avorch.pipeline.executor import ExecutorState, PipelineExecutor, spawn_engine
from avorch.pipeline.progress import ProgressParser, ProgressSample

__all__ = [
    "EngineCommand",
    "EngineInput",
    "ExecutorState",
    "PipelineExecutor",
    "ProgressParser",
    "ProgressSample",
    "spawn_engine",
]
