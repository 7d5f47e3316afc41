"""Transcoding API router.

Job trigger, completion callback, asset status, and the HLS retrieval
endpoint that every published playlist points at.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.storage import get_storage
from app.modules.transcoding.exceptions import (
    CatalogWriteError,
    IneligibleJob,
    ObjectNotFoundError,
    TranscodingError,
)
from app.modules.transcoding.schemas import (
    CompletionRequest,
    TranscodeJobRequest,
    TranscodeJobResponse,
)
from app.modules.transcoding.service import TranscodingService
from app.modules.transcoding.tasks import enqueue_transcode
from app.modules.video.repository import AssetNotFoundError, VideoAssetRepository
from app.modules.video.schemas import VideoAssetResponse

router = APIRouter(prefix="/transcoding", tags=["transcoding"])
hls_router = APIRouter(prefix="/hls", tags=["hls"])

# Storage IDs are never reused, so stored objects never change
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def get_transcoding_service(db: AsyncSession = Depends(get_db)) -> TranscodingService:
    return TranscodingService(
        VideoAssetRepository(db),
        get_storage(),
        enqueue=enqueue_transcode,
    )


@router.post(
    "/jobs",
    response_model=TranscodeJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={409: {"model": TranscodeJobResponse}},
)
async def create_transcode_job(
    data: TranscodeJobRequest,
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Trigger a transcode job for an uploaded video."""
    try:
        await service.dispatch(data.asset_id, data.source_storage_id)
    except IneligibleJob as e:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=TranscodeJobResponse(accepted=False, reason=e.reason).model_dump(),
        )
    except AssetNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TranscodingError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return TranscodeJobResponse(accepted=True)


@router.post("/complete", response_model=VideoAssetResponse)
async def complete_transcoding(
    data: CompletionRequest,
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Record the renditions of a finished transcode."""
    try:
        return await service.complete(
            data.asset_id,
            data.rendition_map,
            (data.original_resolution.width, data.original_resolution.height),
            duration_label=data.duration,
        )
    except IneligibleJob as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.reason)
    except AssetNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except CatalogWriteError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.get("/assets/{asset_id}", response_model=VideoAssetResponse)
async def get_asset_status(
    asset_id: uuid.UUID,
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Get the transcoding state of a video asset."""
    try:
        return await service.get_asset(asset_id)
    except AssetNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@hls_router.get("")
async def get_hls_object(
    id: Optional[str] = Query(None, description="Storage ID from a playlist reference"),
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Serve a stored playlist or segment to any player."""
    if not id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Storage ID required")

    try:
        chunks, content_type = await service.retrieve(id)
    except ObjectNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return StreamingResponse(
        chunks,
        media_type=content_type,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET",
            "Cache-Control": IMMUTABLE_CACHE_CONTROL,
        },
    )
