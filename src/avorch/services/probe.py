"""Media metadata queries using ffprobe."""

import asyncio
import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from avorch.errors import EngineInvocationError, ProbeError
from avorch.formats import MediaKind, require_kind
from avorch.models.media import AudioStreamInfo, MediaAsset, VideoStreamInfo

logger = logging.getLogger(__name__)

# Used when the stream reports an unusable frame rate ("0/0", "N/A").
DEFAULT_FPS = 30.0


def parse_frame_rate(value: str | None, default: float = DEFAULT_FPS) -> float:
    """Parse an ffprobe rational frame rate such as "30000/1001".

    Plain numbers ("25") are accepted too. A zero denominator, a
    non-positive result or anything that does not parse yields *default*.
    """
    if not value:
        return default
    num, sep, den = value.strip().partition("/")
    try:
        if not sep:
            fps = float(num)
        else:
            numerator = int(num)
            denominator = int(den)
            if denominator == 0:
                return default
            fps = numerator / denominator
    except ValueError:
        return default
    return fps if fps > 0 else default


class MediaProbe:
    """Queries stream metadata for a single asset."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: float = 30.0) -> None:
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    async def probe(self, path: Path) -> MediaAsset:
        """Extract media information using ffprobe.

        Args:
            path: Path to a video or audio file

        Returns:
            MediaAsset with duration and stream details

        Raises:
            ValidationError: Unsupported extension
            ProbeError: File missing, unreadable or corrupt
            EngineInvocationError: ffprobe could not be started
        """
        path = require_kind(path, MediaKind.VIDEO, MediaKind.AUDIO)
        if not path.exists():
            raise ProbeError(f"File not found: {path}")

        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

        try:
            result = await asyncio.to_thread(
                subprocess.run, cmd, capture_output=True, text=True, timeout=self.timeout
            )
        except FileNotFoundError as e:
            raise EngineInvocationError(f"ffprobe not found: {self.ffprobe_path}") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"ffprobe timed out after {self.timeout}s: {path}") from e

        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {path}: {result.stderr.strip()}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"ffprobe returned invalid JSON for {path}") from e

        asset = self.parse(path, data)
        logger.debug("Probed %s: %.2fs video=%s audio=%s",
                     path.name, asset.duration, asset.has_video, asset.has_audio)
        return asset

    @staticmethod
    def parse(path: Path, data: dict[str, Any]) -> MediaAsset:
        """Build a MediaAsset from ffprobe's JSON document."""
        streams = data.get("streams", [])
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
        if video_stream is None and audio_stream is None:
            raise ProbeError(f"No audio or video stream in {path}")

        duration = _duration(data)
        if duration is None:
            raise ProbeError(f"Duration unavailable for {path}")

        video = None
        if video_stream is not None:
            video = VideoStreamInfo(
                width=int(video_stream.get("width") or 0),
                height=int(video_stream.get("height") or 0),
                fps=parse_frame_rate(video_stream.get("r_frame_rate")),
                codec=video_stream.get("codec_name"),
            )

        audio = None
        if audio_stream is not None:
            audio = AudioStreamInfo(
                codec=audio_stream.get("codec_name"),
                sample_rate=_to_int(audio_stream.get("sample_rate")),
                channels=_to_int(audio_stream.get("channels")),
            )

        return MediaAsset(
            path=path,
            file_name=path.name,
            duration=duration,
            video=video,
            audio=audio,
        )


def _duration(data: dict[str, Any]) -> float | None:
    """Container duration, falling back to the longest stream."""
    duration = _to_float(data.get("format", {}).get("duration"))
    if duration is not None:
        return duration
    stream_durations = [
        d for d in (_to_float(s.get("duration")) for s in data.get("streams", []))
        if d is not None
    ]
    return max(stream_durations) if stream_durations else None


def _to_float(raw: Any) -> float | None:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _to_int(raw: Any) -> int | None:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
