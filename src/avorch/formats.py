"""Supported file formats."""

from enum import Enum
from pathlib import Path

from avorch.errors import ValidationError

VIDEO_EXTENSIONS = frozenset({".mp4", ".avi", ".mov", ".mkv", ".webm", ".flv"})
AUDIO_EXTENSIONS = frozenset({".mp3", ".wav", ".aac", ".m4a", ".flac", ".ogg"})
IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".webp"})


class MediaKind(str, Enum):
    """Category of a media file, decided by its extension."""

    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"


_EXTENSIONS: dict[MediaKind, frozenset[str]] = {
    MediaKind.VIDEO: VIDEO_EXTENSIONS,
    MediaKind.AUDIO: AUDIO_EXTENSIONS,
    MediaKind.IMAGE: IMAGE_EXTENSIONS,
}


def media_kind(path: Path | str) -> MediaKind | None:
    """Return the kind of file at *path*, or None for unsupported extensions."""
    suffix = Path(path).suffix.lower()
    for kind, extensions in _EXTENSIONS.items():
        if suffix in extensions:
            return kind
    return None


def require_kind(path: Path | str, *kinds: MediaKind, label: str = "path") -> Path:
    """Check that *path* has an extension of one of *kinds*.

    Raises:
        ValidationError: If the extension is not supported for this use.
    """
    path = Path(path)
    kind = media_kind(path)
    if kind not in kinds:
        allowed = sorted(ext for k in kinds for ext in _EXTENSIONS[k])
        raise ValidationError(
            f"{label} has unsupported extension '{path.suffix}' "
            f"(expected one of: {' '.join(allowed)})"
        )
    return path
