"""Data models for avorch."""

from avorch.models.edit import Effect, EffectType, Segment, Transition, TransitionType
from avorch.models.media import AudioStreamInfo, MediaAsset, VideoStreamInfo
from avorch.models.profile import EncodeProfile, SizeEstimate
from avorch.models.progress import AggregateProgress, ProgressEvent, ProgressStage
from avorch.models.project import ProjectDocument

__all__ = [
    # Media
    "MediaAsset",
    "VideoStreamInfo",
    "AudioStreamInfo",
    # Editing
    "Segment",
    "Effect",
    "EffectType",
    "Transition",
    "TransitionType",
    # Encoding
    "EncodeProfile",
    "SizeEstimate",
    # Progress
    "ProgressEvent",
    "ProgressStage",
    "AggregateProgress",
    # Project
    "ProjectDocument",
]
