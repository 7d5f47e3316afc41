"""Transcoding status state machine and raw asset cleanup.

pending --dispatch--> processing --> completed | failed

The completion write is the one write that must not be lost: it is retried
with backoff and the raw asset is only deleted once it has returned. Both
terminal writes only apply while the asset is processing, so a redelivered
or late job can never move a settled asset.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Mapping, Optional

from app.core.config import settings
from app.core.logging import log_error, log_info, log_warning
from app.core.metrics import RAW_ASSET_CLEANUP_FAILURES_TOTAL, TRANSCODE_JOBS_TOTAL
from app.core.storage import Storage
from app.modules.job.retry import RetryConfig, get_retry_config, retry_async
from app.modules.transcoding.exceptions import CatalogWriteError, CleanupError, IneligibleJob
from app.modules.video.models import TranscodingStatus
from app.modules.video.repository import AssetNotFoundError, CatalogStore

logger = logging.getLogger(__name__)


class StatusCoordinator:
    """Drives a video asset to its terminal transcoding status."""

    def __init__(
        self,
        catalog: CatalogStore,
        storage: Storage,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        empty_ladder_status: Optional[str] = None,
    ):
        self.catalog = catalog
        self.storage = storage
        self.retry_config = retry_config or get_retry_config("catalog_write")
        self._sleep = sleep
        self.empty_ladder_status = TranscodingStatus(
            empty_ladder_status or settings.TRANSCODE_EMPTY_LADDER_STATUS
        )

    async def _transition(self, asset_id: uuid.UUID, fields: dict, description: str) -> None:
        try:
            applied = await retry_async(
                lambda: self.catalog.patch_if_processing(asset_id, fields),
                self.retry_config,
                give_up_on=(AssetNotFoundError, ValueError),
                description=description,
                sleep=self._sleep,
            )
        except AssetNotFoundError:
            raise
        except Exception as e:
            raise CatalogWriteError(f"{description} for asset {asset_id} failed: {e}") from e

        if not applied:
            raise IneligibleJob(f"asset is not processing, {description} skipped")

    async def complete(
        self,
        asset_id: uuid.UUID,
        rendition_map: Mapping[str, str],
        original_resolution: tuple[int, int],
        duration_label: Optional[str] = None,
    ) -> None:
        """Persist a successful transcode.

        Raises:
            CatalogWriteError: If the write did not succeed within the retry budget
            AssetNotFoundError: If the asset does not exist
            IneligibleJob: If the asset is no longer processing
        """
        width, height = original_resolution
        fields = {
            "rendition_map": dict(rendition_map),
            "original_width": width,
            "original_height": height,
            "is_transcoded": True,
            "transcoding_status": TranscodingStatus.COMPLETED.value,
        }
        if duration_label:
            fields["duration"] = duration_label

        await self._transition(asset_id, fields, "completion write")
        TRANSCODE_JOBS_TOTAL.labels(status=TranscodingStatus.COMPLETED.value).inc()
        log_info(
            logger,
            f"Transcode of asset {asset_id} completed with {len(rendition_map)} rendition(s)",
            asset_id=str(asset_id),
            renditions=list(rendition_map),
        )

    async def fail(self, asset_id: uuid.UUID, reason: str) -> None:
        """Persist a failed transcode. The raw asset is left in place.

        Raises:
            IneligibleJob: If the asset is no longer processing
        """
        await self._transition(
            asset_id,
            {"transcoding_status": TranscodingStatus.FAILED.value},
            "failure write",
        )
        TRANSCODE_JOBS_TOTAL.labels(status=TranscodingStatus.FAILED.value).inc()
        log_warning(
            logger,
            f"Transcode of asset {asset_id} failed: {reason}",
            asset_id=str(asset_id),
        )

    async def cleanup_raw_asset(self, asset_id: uuid.UUID, raw_asset_ref: Optional[str]) -> bool:
        """Delete the raw upload and clear its reference.

        Must only be called after ``complete`` has returned. Failures are
        logged and never raised.

        Returns:
            True if the raw asset was deleted
        """
        if not raw_asset_ref:
            return False

        try:
            deleted = await asyncio.to_thread(self.storage.delete, raw_asset_ref)
            if not deleted:
                raise CleanupError(f"Raw asset {raw_asset_ref} could not be deleted")
        except Exception as e:
            RAW_ASSET_CLEANUP_FAILURES_TOTAL.inc()
            log_error(
                logger,
                f"Raw asset cleanup failed for asset {asset_id}",
                exception=e,
                asset_id=str(asset_id),
                storage_id=raw_asset_ref,
            )
            return False

        try:
            await self.catalog.patch(asset_id, {"raw_asset_ref": None})
        except Exception as e:
            log_warning(
                logger,
                f"Raw asset deleted but reference not cleared for asset {asset_id}",
                exception=e,
                asset_id=str(asset_id),
                storage_id=raw_asset_ref,
            )
        return True

    async def settle(
        self,
        asset_id: uuid.UUID,
        planned_tiers: int,
        rendition_map: Mapping[str, str],
        original_resolution: tuple[int, int],
        raw_asset_ref: Optional[str],
        duration_label: Optional[str] = None,
    ) -> TranscodingStatus:
        """Resolve a probed job to its terminal status.

        - nothing planned: ``empty_ladder_status`` (completed by default, raw
          asset kept since it is the only playable copy)
        - planned but nothing published: failed, raw asset kept
        - otherwise: completed, then the raw asset is deleted

        A rejected terminal write raises ``IneligibleJob`` and nothing is
        cleaned up.

        Returns:
            The terminal status written
        """
        if planned_tiers == 0:
            if self.empty_ladder_status == TranscodingStatus.COMPLETED:
                await self.complete(asset_id, {}, original_resolution, duration_label)
                return TranscodingStatus.COMPLETED
            await self.fail(asset_id, "source is smaller than every rendition tier")
            return TranscodingStatus.FAILED

        if not rendition_map:
            await self.fail(asset_id, f"none of {planned_tiers} planned rendition(s) were published")
            return TranscodingStatus.FAILED

        await self.complete(asset_id, rendition_map, original_resolution, duration_label)
        await self.cleanup_raw_asset(asset_id, raw_asset_ref)
        return TranscodingStatus.COMPLETED
