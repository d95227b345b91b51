"""Tests for the pipeline executor."""

from pathlib import Path

import pytest

from avorch.errors import (
    EngineInvocationError,
    EngineRuntimeError,
    OperationCancelledError,
    OperationStateError,
)
from avorch.models.progress import ProgressStage
from avorch.pipeline.commands import EngineCommand, EngineInput
from avorch.pipeline.executor import ExecutorState, PipelineExecutor

from conftest import FakeEngine, FakeProcess, wait_until


def _command(tmp_path: Path, source: str = "a.mp4", duration: float = 1.0) -> EngineCommand:
    return EngineCommand(
        inputs=(EngineInput(tmp_path / source, seek=2.0, duration=duration),),
        output_path=tmp_path / "out" / "result.mp4",
        output_args=("-c:v", "libx264"),
        expected_duration=duration,
    )


class TestPipelineExecutor:
    @pytest.mark.asyncio
    async def test_successful_run(self, tmp_path: Path, engine: FakeEngine) -> None:
        executor = PipelineExecutor("op-1", spawner=engine)
        events = []
        executor.add_listener(events.append)

        output = await executor.run(_command(tmp_path))

        assert output == tmp_path / "out" / "result.mp4"
        assert output.read_bytes() == b"media"
        assert executor.state is ExecutorState.COMPLETED
        stages = [e.stage for e in events]
        assert stages[0] is ProgressStage.STARTED
        assert stages[-1] is ProgressStage.COMPLETED
        assert stages.count(ProgressStage.COMPLETED) == 1
        assert ProgressStage.PROCESSING in stages
        percents = [e.percent for e in events]
        assert percents == sorted(percents)
        assert 50.0 in percents
        assert events[-1].percent == 100.0

    @pytest.mark.asyncio
    async def test_command_line(self, tmp_path: Path, engine: FakeEngine) -> None:
        await PipelineExecutor("op-1", ffmpeg_path="/opt/ffmpeg", spawner=engine).run(_command(tmp_path))
        call = engine.calls[0]
        assert call[0] == "/opt/ffmpeg"
        assert call[call.index("-progress") + 1] == "pipe:1"
        assert call[call.index("-ss") + 1] == "2"
        assert call[call.index("-t") + 1] == "1"
        assert call[-1] == str(tmp_path / "out" / "result.mp4")

    @pytest.mark.asyncio
    async def test_engine_failure(self, tmp_path: Path, engine: FakeEngine) -> None:
        engine.fail_when("a.mp4", returncode=1, stderr="Invalid data found when processing input")
        executor = PipelineExecutor("op-1", segment_id="seg-1", spawner=engine)
        events = []
        executor.add_listener(events.append)

        with pytest.raises(EngineRuntimeError) as exc_info:
            await executor.run(_command(tmp_path))

        error = exc_info.value
        assert error.returncode == 1
        assert error.operation_id == "op-1"
        assert error.segment_id == "seg-1"
        assert "Invalid data" in error.stderr_tail
        assert executor.state is ExecutorState.FAILED
        assert events[-1].stage is ProgressStage.ERROR
        assert not (tmp_path / "out" / "result.mp4").exists()

    @pytest.mark.asyncio
    async def test_keep_partial_output(self, tmp_path: Path, engine: FakeEngine) -> None:
        engine.fail_when("a.mp4")
        executor = PipelineExecutor("op-1", keep_partial_output=True, spawner=engine)
        with pytest.raises(EngineRuntimeError):
            await executor.run(_command(tmp_path))
        assert (tmp_path / "out" / "result.mp4").read_bytes() == b"partial"

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path: Path, engine: FakeEngine) -> None:
        engine.spawn_error = FileNotFoundError("ffmpeg")
        executor = PipelineExecutor("op-1", spawner=engine)
        events = []
        executor.add_listener(events.append)

        with pytest.raises(EngineInvocationError):
            await executor.start(_command(tmp_path))

        assert executor.state is ExecutorState.FAILED
        assert [e.stage for e in events] == [ProgressStage.ERROR]

    @pytest.mark.asyncio
    async def test_single_use(self, tmp_path: Path, engine: FakeEngine) -> None:
        executor = PipelineExecutor("op-1", spawner=engine)
        await executor.run(_command(tmp_path))
        with pytest.raises(OperationStateError):
            await executor.start(_command(tmp_path))

    @pytest.mark.asyncio
    async def test_cancel(self, tmp_path: Path, engine: FakeEngine) -> None:
        engine.hang_when("a.mp4")
        executor = PipelineExecutor("op-1", spawner=engine)
        events = []
        executor.add_listener(events.append)

        await executor.start(_command(tmp_path))
        await wait_until(lambda: any(e.stage is ProgressStage.PROCESSING for e in events))

        assert await executor.cancel() is True
        assert engine.processes[0].killed
        assert executor.state is ExecutorState.CANCELLED
        assert not (tmp_path / "out" / "result.mp4").exists()
        with pytest.raises(OperationCancelledError):
            await executor.wait()

        terminal = [e for e in events if e.is_terminal]
        assert [e.stage for e in terminal] == [ProgressStage.CANCELLED]
        assert events[-1].stage is ProgressStage.CANCELLED
        # Nothing after the terminal event, and a second cancel is a no-op.
        assert await executor.cancel() is False

    @pytest.mark.asyncio
    async def test_percent_never_goes_back(self, tmp_path: Path) -> None:
        lines = [
            "out_time_us=8000000",
            "progress=continue",
            "out_time_us=3000000",
            "progress=continue",
            "progress=end",
        ]

        async def spawner(*args: str) -> FakeProcess:
            Path(args[-1]).write_bytes(b"media")
            return FakeProcess(lines)

        executor = PipelineExecutor("op-1", spawner=spawner)
        events = []
        executor.add_listener(events.append)

        await executor.run(_command(tmp_path, duration=10.0))

        percents = [e.percent for e in events]
        assert percents == sorted(percents)
        processing = [e.percent for e in events if e.stage is ProgressStage.PROCESSING]
        assert processing[0] == 80.0
        assert min(processing) == 80.0
        assert events[-1].stage is ProgressStage.COMPLETED

    @pytest.mark.asyncio
    async def test_broken_progress_pipe_kills_engine(self, tmp_path: Path, engine: FakeEngine) -> None:
        engine.hang_when("a.mp4")
        executor = PipelineExecutor("op-1", spawner=engine)

        await executor.start(_command(tmp_path))
        process = engine.processes[0]
        process.stdout.set_exception(ConnectionResetError("pipe closed"))

        with pytest.raises(EngineRuntimeError) as exc_info:
            await executor.wait()

        assert process.killed
        assert exc_info.value.returncode == -9
        assert executor.state is ExecutorState.FAILED
        assert not (tmp_path / "out" / "result.mp4").exists()

    @pytest.mark.asyncio
    async def test_events_iterator(self, tmp_path: Path, engine: FakeEngine) -> None:
        executor = PipelineExecutor("op-1", spawner=engine)
        await executor.start(_command(tmp_path))
        stages = [event.stage async for event in executor.events()]
        assert stages[0] is ProgressStage.STARTED
        assert stages[-1] is ProgressStage.COMPLETED
