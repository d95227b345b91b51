"""Encode profile models."""

from pydantic import BaseModel, ConfigDict, Field


class EncodeProfile(BaseModel):
    """Concrete encode parameters resolved from named presets."""

    model_config = ConfigDict(frozen=True)

    quality: str
    crf: int = Field(..., ge=0, le=51)
    encoder_preset: str
    bitrate_mbps: float = Field(..., gt=0)
    maxrate_mbps: float = Field(..., gt=0)
    bufsize_mbps: float = Field(..., gt=0)
    resolution: str = "original"
    width: int | None = None
    height: int | None = None

    @property
    def scales(self) -> bool:
        """True when the output must be scaled to a fixed size."""
        return self.width is not None and self.height is not None

    def video_args(self, codec: str = "libx264") -> list[str]:
        """Engine arguments for the video encoder."""
        return [
            "-c:v", codec,
            "-preset", self.encoder_preset,
            "-crf", str(self.crf),
            "-maxrate", f"{_fmt(self.maxrate_mbps)}M",
            "-bufsize", f"{_fmt(self.bufsize_mbps)}M",
            "-pix_fmt", "yuv420p",
        ]


class SizeEstimate(BaseModel):
    """Estimated output file size."""

    mb: int
    gb: str
    formatted: str


def _fmt(value: float) -> str:
    return f"{value:g}"
