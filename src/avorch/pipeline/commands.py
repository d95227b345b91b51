"""Engine command lines for each operation recipe."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from avorch.errors import ValidationError
from avorch.graph.builder import fmt_number
from avorch.graph.ir import FilterGraph, StreamKind
from avorch.graph.serializer import serialize
from avorch.models.edit import Segment
from avorch.models.profile import EncodeProfile

AUDIO_BITRATE = "192k"

# output extension -> audio encoder
AUDIO_CODECS: dict[str, str] = {
    ".mp3": "libmp3lame",
    ".wav": "pcm_s16le",
    ".aac": "aac",
    ".m4a": "aac",
    ".flac": "flac",
    ".ogg": "libvorbis",
}
_LOSSLESS = frozenset({"pcm_s16le", "flac"})


@dataclass(frozen=True)
class EngineInput:
    """One ``-i`` input, optionally seeked and limited to a duration."""

    path: Path
    seek: float | None = None
    duration: float | None = None

    def args(self) -> list[str]:
        args: list[str] = []
        if self.seek:
            args += ["-ss", fmt_number(self.seek)]
        if self.duration is not None:
            args += ["-t", fmt_number(self.duration)]
        return args + ["-i", str(self.path)]


@dataclass(frozen=True)
class EngineCommand:
    """Everything needed for one engine invocation.

    Bundles the inputs, the optional filter graph, the encode arguments
    derived from the profile and the output path.
    """

    inputs: tuple[EngineInput, ...]
    output_path: Path
    output_args: tuple[str, ...] = ()
    graph: FilterGraph | None = None
    expected_duration: float | None = None

    def to_args(self, ffmpeg_path: str = "ffmpeg") -> list[str]:
        args = [
            ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-loglevel", "error",
            "-y",
            "-progress", "pipe:1",
        ]
        for engine_input in self.inputs:
            args += engine_input.args()
        if self.graph is not None:
            args += ["-filter_complex", serialize(self.graph)]
        args += list(self.output_args)
        args.append(str(self.output_path))
        return args


def _map(graph: FilterGraph | None, kind: StreamKind, fallback: str) -> list[str]:
    pad = graph.output(kind) if graph is not None else None
    return ["-map", f"[{pad.label}]" if pad is not None else fallback]


def _encode_args(profile: EncodeProfile) -> list[str]:
    return profile.video_args() + ["-c:a", "aac", "-b:a", AUDIO_BITRATE, "-movflags", "+faststart"]


def trim_command(
    segment: Segment,
    profile: EncodeProfile,
    output_path: Path,
    graph: FilterGraph | None = None,
) -> EngineCommand:
    """Cut *segment* out of its source and re-encode it (with its effects)."""
    output_args = _map(graph, StreamKind.VIDEO, "0:v:0") + _map(graph, StreamKind.AUDIO, "0:a?")
    return EngineCommand(
        inputs=(EngineInput(segment.source_path, seek=segment.start_time, duration=segment.duration),),
        output_path=Path(output_path),
        output_args=tuple(output_args + _encode_args(profile)),
        graph=graph,
        expected_duration=segment.duration,
    )


def concat_command(
    segments: list[Segment],
    graph: FilterGraph,
    profile: EncodeProfile,
    output_path: Path,
    expected_duration: float,
) -> EngineCommand:
    """Join *segments* through *graph* (concat or crossfade chain)."""
    inputs = tuple(
        EngineInput(s.source_path, seek=s.start_time, duration=s.duration) for s in segments
    )
    output_args: list[str] = []
    for pad in graph.outputs:
        output_args += ["-map", f"[{pad.label}]"]
    return EngineCommand(
        inputs=inputs,
        output_path=Path(output_path),
        output_args=tuple(output_args + _encode_args(profile)),
        graph=graph,
        expected_duration=expected_duration,
    )


def extract_audio_command(input_path: Path, output_path: Path, duration: float | None) -> EngineCommand:
    """Drop the video and encode the first audio stream by output extension."""
    codec = AUDIO_CODECS.get(Path(output_path).suffix.lower())
    if codec is None:
        raise ValidationError(f"No audio encoder for '{Path(output_path).suffix}'")
    output_args = ["-map", "0:a:0", "-vn", "-c:a", codec]
    if codec not in _LOSSLESS:
        output_args += ["-b:a", AUDIO_BITRATE]
    return EngineCommand(
        inputs=(EngineInput(Path(input_path)),),
        output_path=Path(output_path),
        output_args=tuple(output_args),
        expected_duration=duration,
    )


def replace_audio_command(
    video_path: Path,
    audio_path: Path,
    output_path: Path,
    duration: float | None,
    mix_graph: FilterGraph | None = None,
) -> EngineCommand:
    """Swap the video's audio for *audio_path*, or mix both when a graph is given."""
    if mix_graph is None:
        output_args = ["-map", "0:v:0", "-map", "1:a:0", "-c:v", "copy", "-c:a", "aac"]
    else:
        output_args = _map(mix_graph, StreamKind.AUDIO, "1:a:0")
        output_args = ["-map", "0:v:0"] + output_args + ["-c:v", "copy", "-c:a", "aac"]
    return EngineCommand(
        inputs=(EngineInput(Path(video_path)), EngineInput(Path(audio_path))),
        output_path=Path(output_path),
        output_args=tuple(output_args),
        graph=mix_graph,
        expected_duration=duration,
    )


def remove_audio_command(input_path: Path, output_path: Path, duration: float | None) -> EngineCommand:
    """Copy the video stream and drop all audio."""
    return EngineCommand(
        inputs=(EngineInput(Path(input_path)),),
        output_path=Path(output_path),
        output_args=("-map", "0:v", "-c:v", "copy", "-an"),
        expected_duration=duration,
    )


def thumbnail_command(
    input_path: Path,
    output_path: Path,
    timestamp: float,
    width: int | None = None,
) -> EngineCommand:
    """Write the frame at *timestamp* as an image."""
    output_args = ["-map", "0:v:0", "-frames:v", "1"]
    if width:
        output_args += ["-vf", f"scale={width}:-2"]
    if Path(output_path).suffix.lower() in (".jpg", ".jpeg"):
        output_args += ["-q:v", "2"]
    return EngineCommand(
        inputs=(EngineInput(Path(input_path), seek=timestamp),),
        output_path=Path(output_path),
        output_args=tuple(output_args),
    )
