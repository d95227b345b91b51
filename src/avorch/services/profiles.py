"""Quality and resolution presets."""

from avorch.errors import ValidationError
from avorch.models.profile import EncodeProfile, SizeEstimate

# name -> (crf, encoder preset, bitrate in Mbps)
QUALITY_PRESETS: dict[str, tuple[int, str, float]] = {
    "low": (28, "veryfast", 2.0),
    "medium": (23, "medium", 5.0),
    "high": (20, "medium", 8.0),
    "ultra": (18, "slow", 12.0),
}

# name -> (width, height); None keeps the source dimensions
RESOLUTIONS: dict[str, tuple[int, int] | None] = {
    "original": None,
    "480p": (854, 480),
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "1440p": (2560, 1440),
    "4k": (3840, 2160),
}

MAXRATE_FACTOR = 1.5
BUFSIZE_FACTOR = 2.0


class QualityProfileResolver:
    """Maps named presets to concrete encode parameters.

    Unknown names are rejected rather than replaced with a default, so the
    encode settings of a run can always be traced back to its request.
    """

    def __init__(
        self,
        qualities: dict[str, tuple[int, str, float]] | None = None,
        resolutions: dict[str, tuple[int, int] | None] | None = None,
    ) -> None:
        self._qualities = dict(qualities or QUALITY_PRESETS)
        self._resolutions = dict(resolutions or RESOLUTIONS)

    @property
    def quality_names(self) -> list[str]:
        return list(self._qualities)

    @property
    def resolution_names(self) -> list[str]:
        return list(self._resolutions)

    def resolve(
        self,
        quality: str,
        resolution: str = "original",
        bitrate_mbps: float | None = None,
    ) -> EncodeProfile:
        """Resolve preset names into an EncodeProfile.

        Args:
            quality: Quality preset name
            resolution: Resolution preset name
            bitrate_mbps: Optional bitrate overriding the preset's

        Raises:
            ValidationError: Unknown preset name or non-positive bitrate
        """
        if quality not in self._qualities:
            raise ValidationError(
                f"Unknown quality '{quality}' (expected one of: {', '.join(self._qualities)})"
            )
        if resolution not in self._resolutions:
            raise ValidationError(
                f"Unknown resolution '{resolution}' "
                f"(expected one of: {', '.join(self._resolutions)})"
            )

        crf, preset, default_bitrate = self._qualities[quality]
        if bitrate_mbps is None:
            bitrate_mbps = default_bitrate
        elif bitrate_mbps <= 0:
            raise ValidationError(f"bitrate_mbps must be positive, got {bitrate_mbps}")

        size = self._resolutions[resolution]
        width, height = size if size else (None, None)

        return EncodeProfile(
            quality=quality,
            crf=crf,
            encoder_preset=preset,
            bitrate_mbps=bitrate_mbps,
            maxrate_mbps=bitrate_mbps * MAXRATE_FACTOR,
            bufsize_mbps=bitrate_mbps * BUFSIZE_FACTOR,
            resolution=resolution,
            width=width,
            height=height,
        )


def estimate_output_size(bitrate_mbps: float, duration_minutes: float) -> SizeEstimate:
    """Estimate the size of an encode at a constant bitrate.

    Sizes below 1024 MB are formatted in MB, larger ones in GB.
    """
    if bitrate_mbps < 0 or duration_minutes < 0:
        raise ValidationError("bitrate and duration must not be negative")
    mb = round(bitrate_mbps * duration_minutes * 60 / 8)
    gb = f"{mb / 1024:.2f}"
    formatted = f"{mb} MB" if mb < 1024 else f"{gb} GB"
    return SizeEstimate(mb=mb, gb=gb, formatted=formatted)
