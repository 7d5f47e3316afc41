"""Service layer for transcoding operations.

Covers the synchronous edges of the pipeline: accepting jobs, the completion
callback, status lookups and the retrieval read path. The job itself runs
in the worker (see ``tasks``).
"""

import asyncio
import logging
import uuid
from typing import Callable, Iterator, Mapping, Optional

from app.core.logging import log_error, log_info
from app.core.metrics import TRANSCODE_DISPATCH_TOTAL
from app.core.storage import Storage, content_type_for, is_valid_storage_id, iter_object
from app.modules.transcoding.abr import TIER_NAMES
from app.modules.transcoding.coordinator import StatusCoordinator
from app.modules.transcoding.exceptions import (
    IneligibleJob,
    ObjectNotFoundError,
    TranscodingError,
)
from app.modules.video.models import TranscodingStatus, VideoAsset
from app.modules.video.repository import AssetNotFoundError, CatalogStore

logger = logging.getLogger(__name__)


Enqueue = Callable[[uuid.UUID, str], None]


class TranscodingService:
    """Service for managing transcoding operations."""

    def __init__(
        self,
        catalog: CatalogStore,
        storage: Storage,
        enqueue: Optional[Enqueue] = None,
        coordinator: Optional[StatusCoordinator] = None,
    ):
        """Initialize service.

        Args:
            catalog: Catalog store holding video assets
            storage: Object storage holding raw uploads and renditions
            enqueue: Hands an accepted job to the worker queue
            coordinator: Status coordinator for completion callbacks
        """
        self.catalog = catalog
        self.storage = storage
        self.enqueue = enqueue
        self.coordinator = coordinator or StatusCoordinator(catalog, storage)

    async def get_asset(self, asset_id: uuid.UUID) -> VideoAsset:
        asset = await self.catalog.get(asset_id)
        if asset is None:
            raise AssetNotFoundError(f"Video asset {asset_id} not found")
        return asset

    async def dispatch(self, asset_id: uuid.UUID, source_ref: str) -> None:
        """Accept a transcode job and queue it.

        Nothing is written unless the job is accepted; acceptance is the
        atomic move of the asset to processing.

        Raises:
            AssetNotFoundError: If the asset does not exist
            IneligibleJob: If the asset is mid-processing or already
                transcoded, or the source is not a stored video
            TranscodingError: If the job could not be queued
        """
        try:
            asset = await self.get_asset(asset_id)
            if not asset.is_eligible_for_transcode():
                raise IneligibleJob(self._ineligible_reason(asset))
            await self._check_source(source_ref)
            if not await self.catalog.mark_processing(asset_id):
                # Lost the race against a concurrent dispatch
                raise IneligibleJob("asset is already processing or transcoded")
        except IneligibleJob as e:
            TRANSCODE_DISPATCH_TOTAL.labels(outcome="rejected").inc()
            log_info(
                logger,
                f"Transcode of asset {asset_id} rejected: {e.reason}",
                asset_id=str(asset_id),
            )
            raise

        try:
            if self.enqueue is not None:
                self.enqueue(asset_id, source_ref)
        except Exception as e:
            TRANSCODE_DISPATCH_TOTAL.labels(outcome="enqueue_failed").inc()
            log_error(
                logger,
                f"Could not queue transcode of asset {asset_id}",
                exception=e,
                asset_id=str(asset_id),
            )
            await self.coordinator.fail(asset_id, "job could not be queued")
            raise TranscodingError(f"Could not queue transcode of asset {asset_id}") from e

        TRANSCODE_DISPATCH_TOTAL.labels(outcome="accepted").inc()
        log_info(
            logger,
            f"Transcode of asset {asset_id} accepted",
            asset_id=str(asset_id),
            storage_id=source_ref,
        )

    @staticmethod
    def _ineligible_reason(asset: VideoAsset) -> str:
        if asset.is_transcoded:
            return "asset is already transcoded"
        return "asset is already processing"

    async def _check_source(self, source_ref: str) -> None:
        if not content_type_for(source_ref).startswith("video/"):
            raise IneligibleJob(f"source {source_ref} is not a video")
        if not await asyncio.to_thread(self.storage.exists, source_ref):
            raise IneligibleJob(f"source {source_ref} does not exist")

    async def complete(
        self,
        asset_id: uuid.UUID,
        rendition_map: Mapping[str, str],
        original_resolution: tuple[int, int],
        duration_label: Optional[str] = None,
    ) -> VideoAsset:
        """Completion callback: persist results, then retire the raw upload.

        Raises:
            AssetNotFoundError: If the asset does not exist
            ValueError: If the rendition map names an unknown tier
            IneligibleJob: If the asset is not processing; nothing is written
                and the raw upload is kept
            CatalogWriteError: If the write did not succeed within its retry budget
        """
        unknown = set(rendition_map) - set(TIER_NAMES)
        if unknown:
            raise ValueError(f"Unknown rendition tiers: {sorted(unknown)}")

        asset = await self.get_asset(asset_id)
        if asset.transcoding_status != TranscodingStatus.PROCESSING.value:
            raise IneligibleJob(f"asset is {asset.transcoding_status}, not processing")
        raw_asset_ref = asset.raw_asset_ref

        # Keep ladder order regardless of the order the caller sent
        ordered = {name: rendition_map[name] for name in TIER_NAMES if name in rendition_map}
        await self.coordinator.complete(asset_id, ordered, original_resolution, duration_label)
        if ordered:
            await self.coordinator.cleanup_raw_asset(asset_id, raw_asset_ref)
        return await self.get_asset(asset_id)

    async def retrieve(self, storage_id: str) -> tuple[Iterator[bytes], str]:
        """Resolve an indirection reference to the stored object.

        Returns:
            Tuple of (chunk iterator, content type); the iterator closes the
            object once exhausted

        Raises:
            ObjectNotFoundError: If nothing is stored under the ID
        """
        if not is_valid_storage_id(storage_id):
            raise ObjectNotFoundError(f"Invalid storage ID: {storage_id}")
        stream = await asyncio.to_thread(self.storage.open, storage_id)
        if stream is None:
            raise ObjectNotFoundError(f"No object stored under {storage_id}")
        return iter_object(stream), content_type_for(storage_id)

