"""Tests for the media probe."""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from avorch.errors import EngineInvocationError, ProbeError, ValidationError
from avorch.services.probe import DEFAULT_FPS, MediaProbe, parse_frame_rate

FFPROBE_OUTPUT = {
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "r_frame_rate": "30000/1001",
        },
        {
            "codec_type": "audio",
            "codec_name": "aac",
            "sample_rate": "48000",
            "channels": 2,
        },
    ],
    "format": {"duration": "12.5"},
}


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("30000/1001", 30000 / 1001),
        ("25/1", 25.0),
        ("24", 24.0),
        ("0/0", DEFAULT_FPS),
        ("30/0", DEFAULT_FPS),
        ("N/A", DEFAULT_FPS),
        ("", DEFAULT_FPS),
        (None, DEFAULT_FPS),
        ("-25/1", DEFAULT_FPS),
    ],
)
def test_parse_frame_rate(value, expected) -> None:
    assert parse_frame_rate(value) == pytest.approx(expected)


class TestParse:
    def test_video_with_audio(self) -> None:
        asset = MediaProbe.parse(Path("/m/clip.mp4"), FFPROBE_OUTPUT)
        assert asset.duration == 12.5
        assert asset.file_name == "clip.mp4"
        assert asset.resolution == "1920x1080"
        assert asset.video.fps == pytest.approx(29.97, rel=1e-3)
        assert asset.audio.sample_rate == 48000
        assert asset.has_audio

    def test_unusable_frame_rate_defaults(self) -> None:
        data = json.loads(json.dumps(FFPROBE_OUTPUT))
        data["streams"][0]["r_frame_rate"] = "0/0"
        assert MediaProbe.parse(Path("clip.mp4"), data).video.fps == DEFAULT_FPS

    def test_duration_from_streams(self) -> None:
        data = {"streams": [{"codec_type": "audio", "duration": "3.2"}], "format": {}}
        asset = MediaProbe.parse(Path("a.wav"), data)
        assert asset.duration == 3.2
        assert not asset.has_video

    def test_no_streams(self) -> None:
        with pytest.raises(ProbeError):
            MediaProbe.parse(Path("x.mp4"), {"streams": [], "format": {"duration": "1"}})

    def test_no_duration(self) -> None:
        with pytest.raises(ProbeError):
            MediaProbe.parse(Path("x.mp4"), {"streams": [{"codec_type": "video"}], "format": {}})


class TestProbe:
    @pytest.mark.asyncio
    async def test_probe_runs_ffprobe(self, tmp_path: Path) -> None:
        clip = tmp_path / "clip.mp4"
        clip.write_bytes(b"x")
        completed = MagicMock(returncode=0, stdout=json.dumps(FFPROBE_OUTPUT), stderr="")
        with patch("avorch.services.probe.subprocess.run", return_value=completed) as run:
            asset = await MediaProbe("my-ffprobe").probe(clip)
        assert asset.duration == 12.5
        cmd = run.call_args.args[0]
        assert cmd[0] == "my-ffprobe"
        assert cmd[-1] == str(clip)

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ProbeError):
            await MediaProbe().probe(tmp_path / "missing.mp4")

    @pytest.mark.asyncio
    async def test_unsupported_extension(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            await MediaProbe().probe(tmp_path / "notes.txt")

    @pytest.mark.asyncio
    async def test_ffprobe_failure(self, tmp_path: Path) -> None:
        clip = tmp_path / "clip.mp4"
        clip.write_bytes(b"x")
        completed = MagicMock(returncode=1, stdout="", stderr="moov atom not found")
        with patch("avorch.services.probe.subprocess.run", return_value=completed):
            with pytest.raises(ProbeError, match="moov atom"):
                await MediaProbe().probe(clip)

    @pytest.mark.asyncio
    async def test_ffprobe_missing(self, tmp_path: Path) -> None:
        clip = tmp_path / "clip.mp4"
        clip.write_bytes(b"x")
        with patch("avorch.services.probe.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(EngineInvocationError):
                await MediaProbe().probe(clip)

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path: Path) -> None:
        clip = tmp_path / "clip.mp4"
        clip.write_bytes(b"x")
        error = subprocess.TimeoutExpired(cmd="ffprobe", timeout=1)
        with patch("avorch.services.probe.subprocess.run", side_effect=error):
            with pytest.raises(ProbeError, match="timed out"):
                await MediaProbe(timeout=1).probe(clip)
