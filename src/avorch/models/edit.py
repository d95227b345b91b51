"""Editing models: segments, effects and transitions."""

from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Segment ids become temp file names.
SEGMENT_ID_PATTERN = r"^[A-Za-z0-9_-]+$"


class EffectType(str, Enum):
    """Effects the graph builder knows how to express."""

    BRIGHTNESS = "brightness"
    CONTRAST = "contrast"
    SATURATION = "saturation"
    BLUR = "blur"
    GRAYSCALE = "grayscale"
    FADE_IN = "fade-in"
    FADE_OUT = "fade-out"


class TransitionType(str, Enum):
    """Transitions between adjacent segments."""

    CROSSFADE = "crossfade"


class Effect(BaseModel):
    """A single effect applied to a segment.

    The type is kept as a plain string so that documents carrying effects
    this version does not know still load; the graph builder rejects them.
    """

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Effect type, see EffectType")
    parameters: dict[str, Any] = Field(default_factory=dict)


class Transition(BaseModel):
    """Transition between segment i and i+1."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(TransitionType.CROSSFADE.value, description="Transition type")
    duration: float = Field(..., gt=0, description="Overlap in seconds")


class Segment(BaseModel):
    """A time range of a source file, with its effects."""

    model_config = ConfigDict(frozen=True)

    segment_id: str = Field(default_factory=lambda: uuid4().hex[:12], pattern=SEGMENT_ID_PATTERN)
    source_path: Path = Field(..., description="Source media file")
    asset_id: str | None = Field(None, description="MediaAsset id in a project document")
    start_time: float = Field(..., description="Start time in seconds")
    end_time: float = Field(..., description="End time in seconds")
    effects: list[Effect] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_range(self) -> "Segment":
        """Ensure the range is non-negative and not empty."""
        if self.start_time < 0:
            raise ValueError("start_time must not be negative")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be greater than start_time")
        return self

    @property
    def duration(self) -> float:
        """Return duration in seconds."""
        return self.end_time - self.start_time
