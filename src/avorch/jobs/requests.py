"""Request parameter models, validated before anything is spawned."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from avorch.errors import ValidationError
from avorch.formats import MediaKind, require_kind
from avorch.jobs.models import OperationType
from avorch.models.edit import SEGMENT_ID_PATTERN, Effect, Segment, Transition


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def check_formats(self) -> None:
        """Re-validate file extensions; overridden per request type."""


class _EncodeOptions(BaseModel):
    quality: str | None = Field(None, description="Quality preset (default from settings)")
    resolution: str | None = Field(None, description="Resolution preset (default from settings)")
    bitrate_mbps: float | None = Field(None, description="Bitrate override in Mbps")
    keep_partial_output: bool | None = Field(
        None, description="Keep partial/temporary output on failure for inspection"
    )


class TrimRequest(_Request, _EncodeOptions):
    input_path: Path
    start_time: float = Field(..., ge=0)
    end_time: float
    segment_id: str | None = Field(None, pattern=SEGMENT_ID_PATTERN)
    effects: list[Effect] = Field(default_factory=list)
    output_path: Path | None = None

    @model_validator(mode="after")
    def validate_range(self) -> "TrimRequest":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be greater than start_time")
        return self

    def check_formats(self) -> None:
        require_kind(self.input_path, MediaKind.VIDEO, label="input_path")
        if self.output_path is not None:
            require_kind(self.output_path, MediaKind.VIDEO, label="output_path")

    def to_segment(self) -> Segment:
        fields: dict[str, Any] = {
            "source_path": self.input_path,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "effects": self.effects,
        }
        if self.segment_id:
            fields["segment_id"] = self.segment_id
        return Segment(**fields)


class MergeRequest(_Request, _EncodeOptions):
    segments: list[Segment] = Field(..., min_length=1)
    transitions: list[Transition] = Field(default_factory=list)
    output_path: Path | None = None

    @model_validator(mode="after")
    def validate_ids(self) -> "MergeRequest":
        ids = [s.segment_id for s in self.segments]
        if len(ids) != len(set(ids)):
            raise ValueError("segment_id values must be unique")
        return self

    def check_formats(self) -> None:
        for segment in self.segments:
            require_kind(segment.source_path, MediaKind.VIDEO, label=f"segment {segment.segment_id}")
        if self.output_path is not None:
            require_kind(self.output_path, MediaKind.VIDEO, label="output_path")


class ExtractAudioRequest(_Request):
    input_path: Path
    output_path: Path | None = None
    keep_partial_output: bool | None = None

    def check_formats(self) -> None:
        require_kind(self.input_path, MediaKind.VIDEO, label="input_path")
        if self.output_path is not None:
            require_kind(self.output_path, MediaKind.AUDIO, label="output_path")


class ReplaceAudioRequest(_Request):
    video_path: Path
    audio_path: Path
    output_path: Path | None = None
    mode: Literal["replace", "mix"] = "replace"
    keep_partial_output: bool | None = None

    def check_formats(self) -> None:
        require_kind(self.video_path, MediaKind.VIDEO, label="video_path")
        require_kind(self.audio_path, MediaKind.AUDIO, MediaKind.VIDEO, label="audio_path")
        if self.output_path is not None:
            require_kind(self.output_path, MediaKind.VIDEO, label="output_path")


class RemoveAudioRequest(_Request):
    input_path: Path
    output_path: Path | None = None
    keep_partial_output: bool | None = None

    def check_formats(self) -> None:
        require_kind(self.input_path, MediaKind.VIDEO, label="input_path")
        if self.output_path is not None:
            require_kind(self.output_path, MediaKind.VIDEO, label="output_path")


class ThumbnailRequest(_Request):
    input_path: Path
    output_path: Path | None = None
    timestamp: float | None = Field(None, ge=0, description="Seconds; default 10% of duration")
    width: int | None = Field(None, gt=0)
    keep_partial_output: bool | None = None

    def check_formats(self) -> None:
        require_kind(self.input_path, MediaKind.VIDEO, label="input_path")
        if self.output_path is not None:
            require_kind(self.output_path, MediaKind.IMAGE, label="output_path")


class ProbeRequest(_Request):
    path: Path

    def check_formats(self) -> None:
        require_kind(self.path, MediaKind.VIDEO, MediaKind.AUDIO, label="path")


REQUEST_MODELS: dict[OperationType, type[_Request]] = {
    OperationType.TRIM: TrimRequest,
    OperationType.MERGE: MergeRequest,
    OperationType.EXTRACT_AUDIO: ExtractAudioRequest,
    OperationType.REPLACE_AUDIO: ReplaceAudioRequest,
    OperationType.REMOVE_AUDIO: RemoveAudioRequest,
    OperationType.GENERATE_THUMBNAIL: ThumbnailRequest,
    OperationType.PROBE: ProbeRequest,
}


def parse_operation_type(value: str | OperationType) -> OperationType:
    try:
        return OperationType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in OperationType)
        raise ValidationError(f"Unknown operation type '{value}' (expected one of: {allowed})") from None


def parse_request(operation_type: OperationType, params: dict[str, Any]) -> _Request:
    """Validate *params* for *operation_type*.

    Raises:
        ValidationError: Missing or malformed parameters, or unsupported
            file extensions
    """
    model = REQUEST_MODELS[operation_type]
    try:
        request = model.model_validate(params)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {operation_type.value} parameters: {details}") from e
    request.check_formats()
    return request
