"""FFmpeg progress parsing.

ffmpeg started with ``-progress pipe:1`` writes blocks of ``key=value``
lines to stdout, each block terminated by ``progress=continue`` or
``progress=end``.
"""

import re
from dataclasses import dataclass

_OUT_TIME = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")


@dataclass
class ProgressSample:
    """One parsed progress block."""

    out_time_us: int | None = None
    fps: float | None = None
    speed: float | None = None
    finished: bool = False

    @property
    def out_time_seconds(self) -> float | None:
        if self.out_time_us is not None:
            return self.out_time_us / 1_000_000
        return None

    def percent(self, duration_seconds: float | None) -> float:
        """Progress relative to *duration_seconds*, within 0-100.

        Returns 100 for the final block and 0 when the duration or the
        output time is unknown.
        """
        if self.finished:
            return 100.0
        out_time = self.out_time_seconds
        if not duration_seconds or duration_seconds <= 0 or out_time is None:
            return 0.0
        return max(0.0, min(100.0, out_time / duration_seconds * 100))


def parse_out_time(value: str) -> int | None:
    """Parse 'HH:MM:SS.ffffff' into microseconds."""
    match = _OUT_TIME.match(value.strip())
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    total = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    return int(round(total * 1_000_000))


def parse_speed(value: str) -> float | None:
    """Parse '1.25x' into 1.25; 'N/A' gives None."""
    value = value.strip().rstrip("x")
    try:
        return float(value)
    except ValueError:
        return None


class ProgressParser:
    """Incrementally turns progress lines into samples."""

    def __init__(self) -> None:
        self._current = ProgressSample()

    def feed(self, line: str) -> ProgressSample | None:
        """Consume one line; return a sample when a block is complete."""
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None
        key = key.strip()
        value = value.strip()

        if key == "progress":
            sample = self._current
            sample.finished = value == "end"
            self._current = ProgressSample()
            return sample

        if key in ("out_time_us", "out_time_ms"):
            # ffmpeg reports microseconds under both names.
            try:
                self._current.out_time_us = int(value)
            except ValueError:
                pass
        elif key == "out_time" and self._current.out_time_us is None:
            self._current.out_time_us = parse_out_time(value)
        elif key == "fps":
            try:
                self._current.fps = float(value)
            except ValueError:
                pass
        elif key == "speed":
            self._current.speed = parse_speed(value)
        return None
