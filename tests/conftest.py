"""Shared fixtures: a scriptable fake ffmpeg and a mocked probe."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from avorch.jobs.orchestrator import OperationOrchestrator
from avorch.jobs.resources import TempResourceRegistry
from avorch.models.media import AudioStreamInfo, MediaAsset, VideoStreamInfo

PROGRESS_LINES = [
    "frame=15",
    "fps=30.0",
    "out_time_us=500000",
    "speed=1.5x",
    "progress=continue",
    "frame=30",
    "fps=30.0",
    "out_time_us=1000000",
    "speed=1.5x",
    "progress=end",
]


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(
        self,
        stdout_lines: list[str],
        stderr_lines: list[str] | None = None,
        returncode: int = 0,
        hang: bool = False,
    ) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: int | None = None
        self.killed = False
        self._done = asyncio.Event()
        for line in stdout_lines:
            self.stdout.feed_data(f"{line}\n".encode())
        for line in stderr_lines or []:
            self.stderr.feed_data(f"{line}\n".encode())
        if not hang:
            self.finish(returncode)

    def finish(self, returncode: int) -> None:
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self.returncode = returncode
        self._done.set()

    async def wait(self) -> int:
        await self._done.wait()
        return self.returncode

    def kill(self) -> None:
        if self.returncode is None:
            self.killed = True
            self.finish(-9)


class FakeEngine:
    """Spawner recording every invocation.

    By default a run writes its output file and exits 0. Rules keyed by an
    input file name make runs reading that file fail or hang.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.processes: list[FakeProcess] = []
        self._failures: dict[str, tuple[int, str]] = {}
        self._hangs: set[str] = set()
        self.spawn_error: OSError | None = None

    def fail_when(self, name: str, returncode: int = 1, stderr: str = "Invalid data found") -> None:
        self._failures[name] = (returncode, stderr)

    def hang_when(self, name: str) -> None:
        self._hangs.add(name)

    def inputs(self, call: list[str]) -> list[str]:
        return [call[i + 1] for i, arg in enumerate(call[:-1]) if arg == "-i"]

    async def __call__(self, *args: str) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        call = list(args)
        self.calls.append(call)
        output = Path(call[-1])
        names = {Path(p).name for p in self.inputs(call)}

        if names & self._hangs:
            output.write_bytes(b"partial")
            process = FakeProcess(PROGRESS_LINES[:5], hang=True)
        elif names & set(self._failures):
            name = next(iter(names & set(self._failures)))
            returncode, stderr = self._failures[name]
            output.write_bytes(b"partial")
            process = FakeProcess(PROGRESS_LINES[:5], [stderr], returncode=returncode)
        else:
            output.write_bytes(b"media")
            process = FakeProcess(PROGRESS_LINES)
        self.processes.append(process)
        return process


def make_asset(path: Path | str, duration: float = 10.0, audio: bool = True) -> MediaAsset:
    path = Path(path)
    return MediaAsset(
        path=path,
        file_name=path.name,
        duration=duration,
        video=VideoStreamInfo(width=1920, height=1080, fps=30.0, codec="h264"),
        audio=AudioStreamInfo(codec="aac", sample_rate=48000, channels=2) if audio else None,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* on the running loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def media_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "media"
    directory.mkdir()
    for name in ("a.mp4", "b.mp4", "c.mp4", "music.mp3"):
        (directory / name).write_bytes(b"source")
    return directory


@pytest.fixture
def probe() -> AsyncMock:
    mock = AsyncMock()
    mock.probe = AsyncMock(side_effect=lambda path: make_asset(path))
    return mock


@pytest.fixture
def orchestrator(tmp_path: Path, engine: FakeEngine, probe: AsyncMock) -> OperationOrchestrator:
    return OperationOrchestrator(
        resources=TempResourceRegistry(tmp_path / "temp"),
        output_dir=tmp_path / "out",
        probe=probe,
        max_concurrent=4,
        spawner=engine,
    )
