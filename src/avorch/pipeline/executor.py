"""Supervision of a single codec engine invocation."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from pathlib import Path

from avorch.errors import (
    AVOrchError,
    EngineInvocationError,
    EngineRuntimeError,
    OperationCancelledError,
    OperationStateError,
    ResourceError,
)
from avorch.models.progress import ProgressEvent, ProgressStage
from avorch.pipeline.commands import EngineCommand
from avorch.pipeline.progress import ProgressParser, ProgressSample

logger = logging.getLogger(__name__)

EventListener = Callable[[ProgressEvent], None]
ProcessSpawner = Callable[..., Awaitable[asyncio.subprocess.Process]]

STDERR_TAIL_LINES = 20


async def spawn_engine(*args: str) -> asyncio.subprocess.Process:
    """Start the engine with piped progress (stdout) and diagnostics (stderr)."""
    return await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


class ExecutorState(str, Enum):
    """Lifecycle of one engine invocation."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutorState.COMPLETED, ExecutorState.FAILED, ExecutorState.CANCELLED)


class PipelineExecutor:
    """Runs one engine command and reports its progress.

    An executor is single-use: ``start`` may be called once, after which the
    result is available from ``wait`` and the event stream from ``events``
    or registered listeners. The stream always starts with ``started`` (unless
    the engine cannot be spawned), has non-decreasing percentages and ends
    with exactly one terminal event.
    """

    def __init__(
        self,
        operation_id: str,
        *,
        segment_id: str | None = None,
        ffmpeg_path: str = "ffmpeg",
        keep_partial_output: bool = False,
        spawner: ProcessSpawner | None = None,
    ) -> None:
        self.operation_id = operation_id
        self.segment_id = segment_id
        self.ffmpeg_path = ffmpeg_path
        self.keep_partial_output = keep_partial_output
        self._spawn = spawner or spawn_engine

        self._state = ExecutorState.IDLE
        self._command: EngineCommand | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._result: asyncio.Future[Path] | None = None
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._listeners: list[EventListener] = []
        self._last_percent = 0.0
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExecutorState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    @property
    def output_path(self) -> Path | None:
        return self._command.output_path if self._command else None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    def add_listener(self, listener: EventListener) -> None:
        """Call *listener* synchronously for every emitted event."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, command: EngineCommand) -> None:
        """Spawn the engine for *command*.

        Raises:
            OperationStateError: The executor was already started
            EngineInvocationError: The engine could not be spawned
        """
        if self._state is not ExecutorState.IDLE:
            raise OperationStateError(
                f"Executor already used (state={self._state.value})",
                operation_id=self.operation_id,
            )
        self._ensure_result()
        self._command = command
        self._state = ExecutorState.STARTING

        args = command.to_args(self.ffmpeg_path)
        logger.debug("Starting engine for %s: %s", self.operation_id, " ".join(args))
        try:
            command.output_path.parent.mkdir(parents=True, exist_ok=True)
            process = await self._spawn(*args)
        except OSError as e:
            error = EngineInvocationError(
                f"Could not start {self.ffmpeg_path}: {e}",
                operation_id=self.operation_id,
                segment_id=self.segment_id,
            )
            self._finish(ExecutorState.FAILED, ProgressStage.ERROR, error=error)
            raise error from e

        self._process = process
        if self._state is ExecutorState.CANCELLED:
            # cancel() arrived while the process was being spawned
            await self._kill()
            self._remove_output()
            return

        self._state = ExecutorState.RUNNING
        self._emit(ProgressStage.STARTED, 0.0)
        self._supervisor = asyncio.create_task(self._supervise(process, command))

    async def wait(self) -> Path:
        """Wait for the terminal state and return the output path.

        Raises:
            EngineInvocationError / EngineRuntimeError: The run failed
            OperationCancelledError: The run was cancelled
        """
        if self._result is None:
            raise OperationStateError("Executor was never started", operation_id=self.operation_id)
        return await asyncio.shield(self._result)

    async def run(self, command: EngineCommand) -> Path:
        """Start *command* and wait for its result."""
        await self.start(command)
        return await self.wait()

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Yield events in order until (and including) the terminal one."""
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return

    async def cancel(self) -> bool:
        """Kill the engine process and discard its output.

        Returns:
            False if the executor had already reached a terminal state
        """
        if self._state.is_terminal:
            return False
        had_started = self._state is not ExecutorState.IDLE
        self._finish(
            ExecutorState.CANCELLED,
            ProgressStage.CANCELLED,
            error=OperationCancelledError(
                "Operation cancelled",
                operation_id=self.operation_id,
                segment_id=self.segment_id,
            ),
        )
        await self._kill()
        if self._supervisor is not None:
            await asyncio.gather(self._supervisor, return_exceptions=True)
        if had_started and self._process is not None:
            self._remove_output()
        logger.info("Cancelled %s", self.operation_id)
        return True

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def _supervise(self, process: asyncio.subprocess.Process, command: EngineCommand) -> None:
        stderr_task = asyncio.create_task(self._drain_stderr(process))
        parser = ProgressParser()
        returncode: int | None = None
        try:
            assert process.stdout is not None
            async for raw in process.stdout:
                sample = parser.feed(raw.decode("utf-8", errors="replace"))
                if sample is not None:
                    self._on_sample(sample, command.expected_duration)
            returncode = await process.wait()
            await stderr_task
        except asyncio.CancelledError:
            stderr_task.cancel()
            if not self._state.is_terminal:
                self._finish(
                    ExecutorState.CANCELLED,
                    ProgressStage.CANCELLED,
                    error=OperationCancelledError(
                        "Supervision interrupted",
                        operation_id=self.operation_id,
                        segment_id=self.segment_id,
                    ),
                )
                await self._kill()
                self._remove_output()
            raise
        except Exception:
            logger.exception("Error while supervising %s", self.operation_id)
            stderr_task.cancel()
            await self._kill()
            returncode = process.returncode

        if self._state.is_terminal:
            return

        if returncode == 0:
            self._finish(ExecutorState.COMPLETED, ProgressStage.COMPLETED, output=command.output_path)
            logger.info("Engine run completed: %s -> %s", self.operation_id, command.output_path)
            return

        detail = self.stderr_tail or "no diagnostic output"
        error = EngineRuntimeError(
            f"ffmpeg exited with code {returncode}: {detail}",
            operation_id=self.operation_id,
            segment_id=self.segment_id,
            returncode=returncode,
            stderr_tail=self.stderr_tail,
        )
        logger.error("Engine run failed: %s", error.describe())
        self._finish(ExecutorState.FAILED, ProgressStage.ERROR, error=error)
        self._remove_output()

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        async for raw in process.stderr:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                self._stderr_tail.append(line)
                logger.debug("[%s] %s", self.operation_id, line)

    def _on_sample(self, sample: ProgressSample, duration: float | None) -> None:
        if self._state is not ExecutorState.RUNNING:
            return
        self._emit(
            ProgressStage.PROCESSING,
            sample.percent(duration),
            fps=sample.fps,
            speed=sample.speed,
        )

    async def _kill(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    def _remove_output(self) -> None:
        path = self.output_path
        if path is None:
            return
        if self.keep_partial_output:
            if path.exists():
                logger.info("Keeping partial output for inspection: %s", path)
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            error = ResourceError(
                f"Could not remove partial output {path}: {e}",
                operation_id=self.operation_id,
                segment_id=self.segment_id,
            )
            logger.error(error.describe())

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _ensure_result(self) -> asyncio.Future[Path]:
        if self._result is None:
            self._result = asyncio.get_running_loop().create_future()
            # Failures are delivered through events and wait(); an unawaited
            # future must not log "exception was never retrieved".
            self._result.add_done_callback(lambda f: f.cancelled() or f.exception())
        return self._result

    def _finish(
        self,
        state: ExecutorState,
        stage: ProgressStage,
        *,
        output: Path | None = None,
        error: AVOrchError | None = None,
    ) -> None:
        if self._state.is_terminal:
            return
        self._state = state
        percent = 100.0 if stage is ProgressStage.COMPLETED else self._last_percent
        self._emit(stage, percent, message=error.message if error else None)
        result = self._ensure_result()
        if error is not None:
            result.set_exception(error)
        else:
            result.set_result(output)

    def _emit(
        self,
        stage: ProgressStage,
        percent: float,
        *,
        fps: float | None = None,
        speed: float | None = None,
        message: str | None = None,
    ) -> None:
        percent = max(min(max(percent, 0.0), 100.0), self._last_percent)
        self._last_percent = percent
        event = ProgressEvent(
            operation_id=self.operation_id,
            stage=stage,
            percent=percent,
            fps=fps,
            speed=speed,
            segment_id=self.segment_id,
            message=message,
        )
        self._queue.put_nowait(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed for %s", self.operation_id)
