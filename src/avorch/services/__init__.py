"""Service layer for avorch."""

from avorch.services.probe import MediaProbe, parse_frame_rate
from avorch.services.profiles import QualityProfileResolver, estimate_output_size

__all__ = [
    "MediaProbe",
    "parse_frame_rate",
    "QualityProfileResolver",
    "estimate_output_size",
]
