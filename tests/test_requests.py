"""Tests for request validation."""

import pytest

from avorch.errors import ValidationError
from avorch.jobs.models import OperationType
from avorch.jobs.requests import (
    MergeRequest,
    ThumbnailRequest,
    TrimRequest,
    parse_operation_type,
    parse_request,
)


class TestParseRequest:
    def test_trim(self) -> None:
        request = parse_request(
            OperationType.TRIM,
            {"input_path": "/m/a.mp4", "start_time": 1, "end_time": 3, "segment_id": "s1"},
        )
        assert isinstance(request, TrimRequest)
        segment = request.to_segment()
        assert segment.segment_id == "s1"
        assert segment.duration == 2

    def test_trim_empty_range(self) -> None:
        with pytest.raises(ValidationError, match="end_time"):
            parse_request(OperationType.TRIM, {"input_path": "a.mp4", "start_time": 3, "end_time": 1})

    def test_unsupported_extension(self) -> None:
        with pytest.raises(ValidationError, match="unsupported extension"):
            parse_request(OperationType.TRIM, {"input_path": "a.txt", "start_time": 0, "end_time": 1})

    def test_unknown_field(self) -> None:
        with pytest.raises(ValidationError):
            parse_request(OperationType.PROBE, {"path": "a.mp4", "verbose": True})

    def test_merge_duplicate_ids(self) -> None:
        segment = {"segment_id": "s1", "source_path": "a.mp4", "start_time": 0, "end_time": 1}
        with pytest.raises(ValidationError, match="unique"):
            parse_request(OperationType.MERGE, {"segments": [segment, segment]})

    def test_merge(self) -> None:
        request = parse_request(
            OperationType.MERGE,
            {
                "segments": [
                    {"source_path": "a.mp4", "start_time": 0, "end_time": 2},
                    {"source_path": "b.mov", "start_time": 0, "end_time": 2},
                ],
                "transitions": [{"duration": 0.5}],
                "quality": "low",
            },
        )
        assert isinstance(request, MergeRequest)
        assert request.quality == "low"

    def test_extract_audio_output_must_be_audio(self) -> None:
        with pytest.raises(ValidationError):
            parse_request(
                OperationType.EXTRACT_AUDIO, {"input_path": "a.mp4", "output_path": "a.mp4"}
            )

    def test_replace_audio_mode(self) -> None:
        with pytest.raises(ValidationError):
            parse_request(
                OperationType.REPLACE_AUDIO,
                {"video_path": "a.mp4", "audio_path": "m.mp3", "mode": "overlay"},
            )

    def test_thumbnail_defaults(self) -> None:
        request = parse_request(OperationType.GENERATE_THUMBNAIL, {"input_path": "a.mp4"})
        assert isinstance(request, ThumbnailRequest)
        assert request.timestamp is None


def test_parse_operation_type() -> None:
    assert parse_operation_type("extract-audio") is OperationType.EXTRACT_AUDIO
    with pytest.raises(ValidationError, match="Unknown operation type"):
        parse_operation_type("transcode")
