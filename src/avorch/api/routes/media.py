"""Media info endpoint."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, HTTPException, Query

from avorch.api.schemas import MediaInfoResponse
from avorch.config import settings
from avorch.errors import EngineInvocationError, ProbeError, ValidationError

router = APIRouter(prefix="/api/v1/media", tags=["media"])


@router.get("/info", response_model=MediaInfoResponse)
async def get_media_info(
    path: str = Query(..., description="Path to media file"),
) -> MediaInfoResponse:
    from avorch.services.probe import MediaProbe

    file_path = Path(path)
    if not file_path.exists():
        raise HTTPException(status_code=422, detail=f"File not found: {path}")

    probe = MediaProbe(settings.ffprobe_path, timeout=settings.probe_timeout_s)
    try:
        asset = await probe.probe(file_path)
    except (ValidationError, ProbeError) as e:
        raise HTTPException(status_code=422, detail=e.describe()) from e
    except EngineInvocationError as e:
        raise HTTPException(status_code=503, detail=e.describe()) from e

    return MediaInfoResponse(
        path=str(asset.path),
        file_name=asset.file_name,
        duration=asset.duration,
        width=asset.video.width if asset.video else None,
        height=asset.video.height if asset.video else None,
        fps=asset.video.fps if asset.video else None,
        video_codec=asset.video.codec if asset.video else None,
        audio_codec=asset.audio.codec if asset.audio else None,
        sample_rate=asset.audio.sample_rate if asset.audio else None,
        channels=asset.audio.channels if asset.audio else None,
    )
