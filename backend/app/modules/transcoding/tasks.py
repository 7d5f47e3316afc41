"""Celery tasks for the transcoding pipeline.

One task invocation runs one asset's job to completion in the worker, away
from the request path.
"""

import asyncio
import logging
import uuid

from celery import Task

from app.core.celery_app import celery_app
from app.core.database import async_session_maker, engine
from app.core.logging import correlation_scope, log_error
from app.core.storage import get_storage
from app.modules.transcoding.coordinator import StatusCoordinator
from app.modules.transcoding.exceptions import IneligibleJob
from app.modules.transcoding.pipeline import TranscodePipeline
from app.modules.video.models import TranscodingStatus
from app.modules.video.repository import VideoAssetRepository

logger = logging.getLogger(__name__)


class TranscodeTask(Task):
    """Base task for transcoding jobs.

    A job that dies with an exception leaves its asset in processing, which
    would block every later dispatch. ``on_failure`` moves it to failed so
    it can be retried.
    """
    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        asset_id = args[0] if args else kwargs.get("asset_id")
        if not asset_id:
            return
        with correlation_scope(str(asset_id)):
            try:
                asyncio.run(self._mark_asset_failed(uuid.UUID(str(asset_id)), str(exc)))
            except Exception as e:
                log_error(
                    logger,
                    f"Could not mark asset {asset_id} failed after task {task_id} crashed",
                    exception=e,
                    asset_id=str(asset_id),
                )

    async def _mark_asset_failed(self, asset_id: uuid.UUID, error: str) -> None:
        """Mark asset as failed unless it already reached a terminal status."""
        try:
            async with async_session_maker() as session:
                coordinator = StatusCoordinator(VideoAssetRepository(session), get_storage())
                try:
                    await coordinator.fail(asset_id, error)
                except IneligibleJob:
                    return
        finally:
            await engine.dispose()


@celery_app.task(bind=True, base=TranscodeTask, name="transcoding.transcode_asset")
def transcode_asset_task(self: TranscodeTask, asset_id: str, source_ref: str) -> dict:
    """Transcode an uploaded video into HLS renditions.

    Args:
        asset_id: UUID of the video asset, already marked processing
        source_ref: Storage ID of the raw upload

    Returns:
        dict: Terminal status of the job
    """
    status = asyncio.run(_transcode_asset_async(uuid.UUID(asset_id), source_ref))
    return {"asset_id": asset_id, "status": status.value}


async def _transcode_asset_async(asset_id: uuid.UUID, source_ref: str) -> TranscodingStatus:
    """Async implementation of a transcode job."""
    try:
        async with async_session_maker() as session:
            pipeline = TranscodePipeline(VideoAssetRepository(session), get_storage())
            return await pipeline.run(asset_id, source_ref)
    finally:
        # Pooled connections belong to this event loop, which asyncio.run closes
        await engine.dispose()


def enqueue_transcode(asset_id: uuid.UUID, source_ref: str) -> None:
    """Queue a transcode job for an accepted dispatch."""
    transcode_asset_task.delay(str(asset_id), source_ref)
