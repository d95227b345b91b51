"""Media-related data models."""

from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class VideoStreamInfo(BaseModel):
    """First video stream of an asset."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(..., ge=0, description="Frame width in pixels")
    height: int = Field(..., ge=0, description="Frame height in pixels")
    fps: float = Field(..., gt=0, description="Frames per second")
    codec: str | None = Field(None, description="Codec name reported by the engine")


class AudioStreamInfo(BaseModel):
    """First audio stream of an asset."""

    model_config = ConfigDict(frozen=True)

    codec: str | None = Field(None, description="Codec name reported by the engine")
    sample_rate: int | None = Field(None, description="Sample rate in Hz")
    channels: int | None = Field(None, description="Channel count")


class MediaAsset(BaseModel):
    """Probed media file. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    path: Path = Field(..., description="File path")
    file_name: str = Field(..., description="File name without directory")
    duration: float = Field(..., ge=0, description="Duration in seconds")
    video: VideoStreamInfo | None = Field(None, description="Video stream, if any")
    audio: AudioStreamInfo | None = Field(None, description="Audio stream, if any")

    @property
    def has_video(self) -> bool:
        return self.video is not None

    @property
    def has_audio(self) -> bool:
        return self.audio is not None

    @property
    def resolution(self) -> str | None:
        """Return resolution string (e.g., '1920x1080')."""
        if self.video and self.video.width and self.video.height:
            return f"{self.video.width}x{self.video.height}"
        return None
