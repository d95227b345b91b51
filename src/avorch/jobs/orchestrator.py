"""Operation orchestrator: validation, sequencing, progress and cleanup."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from avorch.errors import (
    AVOrchError,
    CompositionError,
    OperationCancelledError,
    ValidationError,
)
from avorch.graph.builder import FilterGraphBuilder
from avorch.jobs.aggregator import ProgressAggregator
from avorch.jobs.events import EventCallback, EventSink, EventStream, NullSink
from avorch.jobs.models import Operation, OperationResult, OperationState, OperationType
from avorch.jobs.requests import (
    ExtractAudioRequest,
    MergeRequest,
    ProbeRequest,
    RemoveAudioRequest,
    ReplaceAudioRequest,
    ThumbnailRequest,
    TrimRequest,
    parse_operation_type,
    parse_request,
)
from avorch.jobs.resources import ResourceScope, TempResource, TempResourceRegistry
from avorch.models.edit import Segment
from avorch.models.media import MediaAsset
from avorch.models.profile import EncodeProfile
from avorch.models.progress import AggregateProgress, ProgressEvent, ProgressStage
from avorch.pipeline import commands
from avorch.pipeline.commands import EngineCommand
from avorch.pipeline.executor import PipelineExecutor, ProcessSpawner
from avorch.services.probe import MediaProbe
from avorch.services.profiles import QualityProfileResolver

if TYPE_CHECKING:
    from avorch.config import Settings

logger = logging.getLogger(__name__)

Handler = Callable[[Operation], Awaitable[OperationResult]]

# Share of a merge's progress spent preparing segments; the rest is the join.
PREPARE_SHARE = 70.0
# Default thumbnail position as a fraction of the duration.
THUMBNAIL_POSITION = 0.1


class OperationOrchestrator:
    """Runs editing operations against the codec engine.

    ``submit`` validates a request synchronously (raising ``ValidationError``
    or ``CompositionError`` without side effects) and schedules it as one
    asyncio task. Every engine invocation goes through a semaphore bounding
    the number of concurrent engine processes.

    Temporary files are reserved from the injected registry under the
    operation's id and released on every exit path. Composite operations
    (merge) run their segment preparations as child operations; the first
    child to fail or be cancelled cancels its siblings and becomes the
    merge's error.
    """

    def __init__(
        self,
        *,
        resources: TempResourceRegistry,
        output_dir: Path,
        sink: EventSink | None = None,
        probe: MediaProbe | None = None,
        resolver: QualityProfileResolver | None = None,
        builder: FilterGraphBuilder | None = None,
        max_concurrent: int = 2,
        ffmpeg_path: str = "ffmpeg",
        keep_partial_output: bool = False,
        default_quality: str = "high",
        default_resolution: str = "original",
        spawner: ProcessSpawner | None = None,
    ) -> None:
        self._resources = resources
        self.output_dir = Path(output_dir)
        self._sink: EventSink = sink or NullSink()
        self._probe = probe or MediaProbe()
        self._resolver = resolver or QualityProfileResolver()
        self._builder = builder or FilterGraphBuilder()
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self.max_concurrent = max_concurrent
        self.ffmpeg_path = ffmpeg_path
        self.keep_partial_output = keep_partial_output
        self.default_quality = default_quality
        self.default_resolution = default_resolution
        self._spawner = spawner

        self._operations: dict[str, Operation] = {}
        self._streams: dict[str, EventStream] = {}
        self._futures: dict[str, asyncio.Future[OperationResult]] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._executors: dict[str, PipelineExecutor] = {}
        self._children: dict[str, list[str]] = {}
        self._aggregators: dict[str, ProgressAggregator] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        sink: EventSink | None = None,
        spawner: ProcessSpawner | None = None,
    ) -> OperationOrchestrator:
        """Build an orchestrator wired from application settings."""
        return cls(
            resources=TempResourceRegistry(settings.temp_dir),
            output_dir=settings.output_dir,
            sink=sink,
            probe=MediaProbe(settings.ffprobe_path, timeout=settings.probe_timeout_s),
            max_concurrent=settings.max_concurrent_jobs,
            ffmpeg_path=settings.ffmpeg_path,
            keep_partial_output=settings.keep_partial_output,
            default_quality=settings.default_quality,
            default_resolution=settings.default_resolution,
            spawner=spawner,
        )

    @property
    def resources(self) -> TempResourceRegistry:
        return self._resources

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, operation_type: str | OperationType, params: dict[str, Any]) -> str:
        """Validate a request and schedule it.

        Must be called from a running event loop.

        Returns:
            The operation id

        Raises:
            ValidationError: Malformed parameters, unknown presets or
                unsupported extensions
            CompositionError: Inconsistent segments, transitions or effects
        """
        op_type = parse_operation_type(operation_type)
        request = parse_request(op_type, params)
        handler, keep = self._plan(op_type, request)

        op = self._create_operation(op_type, params, keep_partial_output=keep)
        self._launch(op, handler)
        logger.info("Submitted %s operation %s", op_type.value, op.id)
        return op.id

    async def run(self, operation_type: str | OperationType, params: dict[str, Any]) -> OperationResult:
        """Submit and wait for the result."""
        return await self.wait(self.submit(operation_type, params))

    async def wait(self, operation_id: str) -> OperationResult:
        """Wait for an operation to finish.

        Raises:
            KeyError: Unknown operation id
            AVOrchError: The error that made the operation fail
        """
        return await asyncio.shield(self._future(operation_id))

    def subscribe(self, operation_id: str, callback: EventCallback) -> Callable[[], None]:
        """Deliver the operation's events to *callback*, past ones first.

        Returns:
            A function that removes the subscription
        """
        stream = self._streams.get(operation_id)
        if stream is None:
            raise KeyError(f"Unknown operation: {operation_id}")
        return stream.subscribe(callback)

    def get(self, operation_id: str) -> Operation | None:
        """Get an operation by ID."""
        return self._operations.get(operation_id)

    def list_operations(self, *, include_children: bool = False) -> list[Operation]:
        """List operations, most recent first."""
        ops = [
            op for op in self._operations.values()
            if include_children or op.parent_id is None
        ]
        return sorted(ops, key=lambda o: o.created_at, reverse=True)

    def children(self, operation_id: str) -> list[Operation]:
        return [self._operations[c] for c in self._children.get(operation_id, [])]

    def events(self, operation_id: str) -> list[ProgressEvent]:
        """Events emitted so far for an operation."""
        stream = self._streams.get(operation_id)
        if stream is None:
            raise KeyError(f"Unknown operation: {operation_id}")
        return list(stream.history)

    def progress(self, operation_id: str) -> AggregateProgress:
        """Aggregate progress of a composite operation's sub-operations.

        For a simple operation, the view contains the operation itself.
        """
        aggregator = self._aggregators.get(operation_id)
        if aggregator is not None:
            return aggregator.snapshot()
        stream = self._streams.get(operation_id)
        if stream is None:
            raise KeyError(f"Unknown operation: {operation_id}")
        single = ProgressAggregator()
        single.track(operation_id)
        if stream.history:
            single.update(operation_id, stream.history[-1])
        return single.snapshot()

    async def cancel(self, operation_id: str) -> bool:
        """Cancel an operation that has not finished.

        Returns:
            False if the operation had already finished

        Raises:
            KeyError: Unknown operation id
        """
        op = self._operations.get(operation_id)
        if op is None:
            raise KeyError(f"Unknown operation: {operation_id}")
        if op.is_terminal:
            return False

        logger.info("Cancelling operation %s", operation_id)
        executor = self._executors.get(operation_id)
        task = self._tasks.get(operation_id)
        if executor is not None:
            await executor.cancel()
        elif task is not None and not task.done():
            if op.state is OperationState.PENDING:
                # Not started yet: the coroutine will never see the cancellation.
                self._conclude(op, OperationState.CANCELLED, error=self._cancelled_error(op))
            task.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return True

    async def shutdown(self) -> None:
        """Cancel everything still running and delete the temp root."""
        for op in self.list_operations():
            if not op.is_terminal:
                await self.cancel(op.id)
        self._resources.cleanup()

    # ------------------------------------------------------------------
    # Planning (synchronous validation)
    # ------------------------------------------------------------------

    def _plan(self, op_type: OperationType, request: Any) -> tuple[Handler, bool]:
        keep = getattr(request, "keep_partial_output", None)
        keep = self.keep_partial_output if keep is None else keep

        if op_type is OperationType.TRIM:
            profile = self._resolve_profile(request)
            segment = request.to_segment()
            self._builder.build_segment(segment, profile)
            output = request.output_path or self.output_dir / f"segment_{segment.segment_id}.mp4"
            return partial(self._exec_trim, segment=segment, profile=profile, output_path=output), keep

        if op_type is OperationType.MERGE:
            profile = self._resolve_profile(request)
            self._builder.build(request.segments, request.transitions, profile=profile)
            output = request.output_path or self.output_dir / "edited_video.mp4"
            return partial(self._exec_merge, request=request, profile=profile, output_path=output), keep

        if op_type is OperationType.EXTRACT_AUDIO:
            output = request.output_path or self.output_dir / "extracted_audio.mp3"
            return partial(self._exec_extract_audio, request=request, output_path=output), keep

        if op_type is OperationType.REPLACE_AUDIO:
            video = request.video_path
            output = request.output_path or self.output_dir / f"{video.stem}_new_audio{video.suffix}"
            return partial(self._exec_replace_audio, request=request, output_path=output), keep

        if op_type is OperationType.REMOVE_AUDIO:
            source = request.input_path
            output = request.output_path or self.output_dir / f"{source.stem}_no_audio{source.suffix}"
            return partial(self._exec_remove_audio, request=request, output_path=output), keep

        if op_type is OperationType.GENERATE_THUMBNAIL:
            output = request.output_path or self.output_dir / f"{request.input_path.stem}_thumbnail.jpg"
            return partial(self._exec_thumbnail, request=request, output_path=output), keep

        return partial(self._exec_probe, request=request), keep

    def _resolve_profile(self, request: TrimRequest | MergeRequest) -> EncodeProfile:
        return self._resolver.resolve(
            request.quality or self.default_quality,
            request.resolution or self.default_resolution,
            request.bitrate_mbps,
        )

    # ------------------------------------------------------------------
    # Operation lifecycle
    # ------------------------------------------------------------------

    def _create_operation(
        self,
        op_type: OperationType,
        params: dict[str, Any],
        *,
        parent_id: str | None = None,
        segment_id: str | None = None,
        keep_partial_output: bool = False,
    ) -> Operation:
        op = Operation(
            type=op_type,
            params=dict(params),
            parent_id=parent_id,
            segment_id=segment_id,
            keep_partial_output=keep_partial_output,
        )
        self._operations[op.id] = op
        self._streams[op.id] = EventStream(op.id)
        future: asyncio.Future[OperationResult] = asyncio.get_running_loop().create_future()
        # Failures are reported through events and wait(); an operation
        # nobody waits for must not log "exception was never retrieved".
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._futures[op.id] = future
        if parent_id is not None:
            self._children.setdefault(parent_id, []).append(op.id)
        return op

    def _launch(self, op: Operation, handler: Handler) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run_operation(op, handler))
        self._tasks[op.id] = task
        task.add_done_callback(partial(self._on_task_done, op))
        return task

    def _on_task_done(self, op: Operation, task: asyncio.Task[None]) -> None:
        # A task cancelled before its first step never enters _run_operation.
        self._tasks.pop(op.id, None)
        if task.cancelled() and not op.is_terminal:
            self._conclude(op, OperationState.CANCELLED, error=self._cancelled_error(op))

    @staticmethod
    def _cancelled_error(op: Operation) -> OperationCancelledError:
        return OperationCancelledError(
            "Operation cancelled", operation_id=op.id, segment_id=op.segment_id
        )

    def _future(self, operation_id: str) -> asyncio.Future[OperationResult]:
        future = self._futures.get(operation_id)
        if future is None:
            raise KeyError(f"Unknown operation: {operation_id}")
        return future

    async def _run_operation(self, op: Operation, handler: Handler) -> None:
        """Execute a handler and record its outcome on the operation."""
        try:
            op.transition(OperationState.STARTING)
            op.message = "Starting..."
            result = await handler(op)
        except asyncio.CancelledError:
            self._conclude(op, OperationState.CANCELLED, error=self._cancelled_error(op))
            raise
        except OperationCancelledError as e:
            self._conclude(op, OperationState.CANCELLED, error=e)
        except AVOrchError as e:
            self._conclude(op, OperationState.FAILED, error=e)
        except Exception as e:
            logger.exception("Operation %s failed", op.id)
            self._conclude(op, OperationState.FAILED, error=e)
        else:
            self._conclude(op, OperationState.COMPLETED, result=result)
        finally:
            self._tasks.pop(op.id, None)

    def _mark_running(self, op: Operation) -> None:
        if op.state is OperationState.STARTING:
            op.transition(OperationState.RUNNING)
            op.message = "Running"
            self._emit(op, ProgressStage.STARTED, 0.0)

    def _conclude(
        self,
        op: Operation,
        state: OperationState,
        *,
        result: OperationResult | None = None,
        error: BaseException | None = None,
    ) -> None:
        if op.is_terminal:
            return
        if state is OperationState.COMPLETED:
            self._mark_running(op)
        op.transition(state)

        future = self._futures[op.id]
        stream = self._streams[op.id]
        if state is OperationState.COMPLETED:
            op.result = result
            op.message = "Complete"
            self._emit(op, ProgressStage.COMPLETED, 100.0)
            logger.info("Operation %s (%s) completed", op.id, op.type.value)
            if not future.done():
                future.set_result(result)
            return

        assert error is not None
        if isinstance(error, AVOrchError):
            error.operation_id = error.operation_id or op.id
            error.segment_id = error.segment_id or op.segment_id
        description = error.describe() if isinstance(error, AVOrchError) else str(error)
        op.error = description
        op.error_kind = error.kind if isinstance(error, AVOrchError) else type(error).__name__
        if state is OperationState.CANCELLED:
            op.message = "Cancelled"
            self._emit(op, ProgressStage.CANCELLED, stream.last_percent, message=description)
            logger.info("Operation %s (%s) cancelled", op.id, op.type.value)
        else:
            op.message = "Failed"
            self._emit(op, ProgressStage.ERROR, stream.last_percent, message=description)
            logger.error("Operation %s (%s) failed: %s", op.id, op.type.value, description)
        if not future.done():
            future.set_exception(error)

    def _emit(
        self,
        op: Operation,
        stage: ProgressStage,
        percent: float,
        *,
        fps: float | None = None,
        speed: float | None = None,
        message: str | None = None,
    ) -> None:
        event = ProgressEvent(
            operation_id=op.id,
            stage=stage,
            percent=max(0.0, min(100.0, percent)),
            timestamp=datetime.now(timezone.utc),
            fps=fps,
            speed=speed,
            segment_id=op.segment_id,
            message=message,
        )
        delivered = self._streams[op.id].publish(event)
        if delivered is None:
            return
        op.progress = delivered.percent
        try:
            self._sink.emit(delivered)
        except Exception:
            logger.exception("Event sink failed for %s", op.id)

    # ------------------------------------------------------------------
    # Engine access
    # ------------------------------------------------------------------

    async def _run_engine(
        self,
        op: Operation,
        command: EngineCommand,
        *,
        span: tuple[float, float] = (0.0, 100.0),
    ) -> Path:
        """Run one engine command for *op*, mapping its progress into *span*."""
        low, high = span
        async with self._semaphore:
            executor = PipelineExecutor(
                op.id,
                segment_id=op.segment_id,
                ffmpeg_path=self.ffmpeg_path,
                keep_partial_output=op.keep_partial_output,
                spawner=self._spawner,
            )

            def forward(event: ProgressEvent) -> None:
                if event.stage is ProgressStage.PROCESSING:
                    self._emit(
                        op,
                        ProgressStage.PROCESSING,
                        low + event.percent * (high - low) / 100.0,
                        fps=event.fps,
                        speed=event.speed,
                    )

            executor.add_listener(forward)
            self._executors[op.id] = executor
            try:
                await executor.start(command)
                self._mark_running(op)
                return await executor.wait()
            finally:
                self._executors.pop(op.id, None)

    async def _probe_asset(self, op: Operation, path: Path) -> MediaAsset:
        async with self._semaphore:
            op.message = f"Probing {path.name}"
            return await self._probe.probe(path)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _exec_trim(
        self,
        op: Operation,
        *,
        segment: Segment,
        profile: EncodeProfile,
        output_path: Path,
    ) -> OperationResult:
        asset = await self._probe_asset(op, segment.source_path)
        if segment.start_time >= asset.duration:
            raise CompositionError(
                f"Segment starts at {segment.start_time}s but {asset.file_name} "
                f"is only {asset.duration}s long",
                operation_id=op.id,
                segment_id=segment.segment_id,
            )
        if segment.end_time > asset.duration:
            logger.warning(
                "Segment %s ends at %ss; clamping to the %ss length of %s",
                segment.segment_id, segment.end_time, asset.duration, asset.file_name,
            )
            segment = segment.model_copy(update={"end_time": asset.duration})
        graph = self._builder.build_segment(segment, profile, with_audio=asset.has_audio)
        command = commands.trim_command(segment, profile, output_path, graph)
        op.message = f"Trimming {segment.segment_id}"
        path = await self._run_engine(op, command)
        return OperationResult(
            output_path=path,
            data={
                "segment_id": segment.segment_id,
                "has_audio": asset.has_audio,
                "duration": segment.duration,
            },
        )

    async def _exec_merge(
        self,
        op: Operation,
        *,
        request: MergeRequest,
        profile: EncodeProfile,
        output_path: Path,
    ) -> OperationResult:
        segments = request.segments
        with self._resources.scope(op.id, retain_on_error=op.keep_partial_output) as scope:
            self._mark_running(op)
            prepared = await self._prepare_segments(op, segments, profile, scope)

            if len(prepared) == 1:
                resource, _, _ = prepared[0]
                op.message = "Handing off single segment"
                final = scope.hand_off(resource, output_path)
            else:
                joined = [
                    Segment(
                        segment_id=segment.segment_id,
                        source_path=resource.path,
                        start_time=0.0,
                        end_time=duration,
                    )
                    for segment, (resource, _, duration) in zip(segments, prepared)
                ]
                with_audio = all(has_audio for _, has_audio, _ in prepared)
                graph = self._builder.build(joined, request.transitions, with_audio=with_audio)
                assert graph is not None
                expected = sum(s.duration for s in joined) - sum(t.duration for t in request.transitions)
                command = commands.concat_command(joined, graph, profile, output_path, expected)
                op.message = f"Joining {len(joined)} segments"
                final = await self._run_engine(op, command, span=(PREPARE_SHARE, 100.0))

        return OperationResult(
            output_path=final,
            data={
                "segment_count": len(segments),
                "transition_count": len(request.transitions),
            },
        )

    async def _prepare_segments(
        self,
        op: Operation,
        segments: list[Segment],
        profile: EncodeProfile,
        scope: ResourceScope,
    ) -> list[tuple[TempResource, bool, float]]:
        """Trim every segment into a temp file as concurrent child operations.

        Returns (resource, has_audio, duration) per segment, in segment order.
        The duration is the prepared length, which is shorter than requested
        when a segment runs past the end of its source.
        """
        aggregator = ProgressAggregator()
        self._aggregators[op.id] = aggregator
        children: list[tuple[Operation, TempResource]] = []

        for segment in segments:
            child = self._create_operation(
                OperationType.TRIM,
                segment.model_dump(mode="json"),
                parent_id=op.id,
                segment_id=segment.segment_id,
                keep_partial_output=op.keep_partial_output,
            )
            aggregator.track(child.id)
            self._streams[child.id].subscribe(partial(self._on_child_event, op, aggregator, child.id))
            resource = scope.reserve(f"segment_{segment.segment_id}.mp4")
            children.append((child, resource))
            handler = partial(
                self._exec_trim, segment=segment, profile=profile, output_path=resource.path
            )
            self._launch(child, handler)

        op.message = f"Preparing {len(segments)} segments"
        futures = {self._futures[child.id]: child for child, _ in children}
        pending: set[asyncio.Future[OperationResult]] = set(futures)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                failed = [f for f in done if f.exception() is not None]
                if failed:
                    # First to reach a terminal state wins.
                    first = min(failed, key=lambda f: futures[f].completed_at or datetime.max.replace(tzinfo=timezone.utc))
                    error = first.exception()
                    logger.warning(
                        "Segment %s of %s failed; cancelling siblings",
                        futures[first].segment_id, op.id,
                    )
                    await self._cancel_children(op)
                    raise error
        except asyncio.CancelledError:
            await self._cancel_children(op)
            raise

        prepared: list[tuple[TempResource, bool, float]] = []
        for child, resource in children:
            scope.mark_written(resource)
            result = self._futures[child.id].result()
            prepared.append((resource, bool(result.data["has_audio"]), float(result.data["duration"])))
        return prepared

    def _on_child_event(
        self,
        op: Operation,
        aggregator: ProgressAggregator,
        child_id: str,
        event: ProgressEvent,
    ) -> None:
        snapshot = aggregator.update(child_id, event)
        if op.state is OperationState.RUNNING:
            self._emit(op, ProgressStage.PROCESSING, snapshot.percent * PREPARE_SHARE / 100.0)

    async def _cancel_children(self, op: Operation) -> None:
        for child_id in self._children.get(op.id, []):
            child = self._operations[child_id]
            if not child.is_terminal:
                await self.cancel(child_id)

    async def _exec_extract_audio(
        self, op: Operation, *, request: ExtractAudioRequest, output_path: Path
    ) -> OperationResult:
        asset = await self._probe_asset(op, request.input_path)
        if not asset.has_audio:
            raise ValidationError(f"{asset.file_name} has no audio stream", operation_id=op.id)
        command = commands.extract_audio_command(request.input_path, output_path, asset.duration)
        op.message = "Extracting audio"
        path = await self._run_engine(op, command)
        return OperationResult(output_path=path)

    async def _exec_replace_audio(
        self, op: Operation, *, request: ReplaceAudioRequest, output_path: Path
    ) -> OperationResult:
        asset = await self._probe_asset(op, request.video_path)
        mix_graph = None
        if request.mode == "mix":
            if not asset.has_audio:
                raise ValidationError(
                    f"Cannot mix: {asset.file_name} has no audio stream", operation_id=op.id
                )
            mix_graph = self._builder.build_audio_mix(request.video_path, request.audio_path)
        command = commands.replace_audio_command(
            request.video_path, request.audio_path, output_path, asset.duration, mix_graph
        )
        op.message = "Mixing audio" if mix_graph else "Replacing audio"
        path = await self._run_engine(op, command)
        return OperationResult(output_path=path, data={"mode": request.mode})

    async def _exec_remove_audio(
        self, op: Operation, *, request: RemoveAudioRequest, output_path: Path
    ) -> OperationResult:
        asset = await self._probe_asset(op, request.input_path)
        command = commands.remove_audio_command(request.input_path, output_path, asset.duration)
        op.message = "Removing audio"
        path = await self._run_engine(op, command)
        return OperationResult(output_path=path)

    async def _exec_thumbnail(
        self, op: Operation, *, request: ThumbnailRequest, output_path: Path
    ) -> OperationResult:
        timestamp = request.timestamp
        if timestamp is None:
            asset = await self._probe_asset(op, request.input_path)
            timestamp = round(asset.duration * THUMBNAIL_POSITION, 3)
        command = commands.thumbnail_command(request.input_path, output_path, timestamp, request.width)
        op.message = "Generating thumbnail"
        path = await self._run_engine(op, command)
        return OperationResult(output_path=path, data={"timestamp": timestamp})

    async def _exec_probe(self, op: Operation, *, request: ProbeRequest) -> OperationResult:
        self._mark_running(op)
        asset = await self._probe_asset(op, request.path)
        return OperationResult(output_path=None, data={"asset": asset.model_dump(mode="json")})
