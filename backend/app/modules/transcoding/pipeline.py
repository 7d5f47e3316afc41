"""Transcode job orchestration.

One job handles one asset: fetch source, probe, plan the ladder, then encode
and publish each planned tier in turn, and finally settle the catalog record.
A tier that fails to encode or publish is dropped and the job carries on
with the next one.
"""

import asyncio
import logging
import os
import shutil
import tempfile
import time
import uuid
from typing import Awaitable, Callable, Optional

from app.core.config import settings
from app.core.logging import correlation_scope, log_error, log_info, log_warning
from app.core.metrics import (
    ENCODE_DURATION_SECONDS,
    RENDITION_FAILURES_TOTAL,
    RENDITIONS_PUBLISHED_TOTAL,
    TRANSCODE_JOB_DURATION_SECONDS,
)
from app.core.storage import Storage
from app.core.tracing import create_span, record_exception
from app.modules.job.retry import get_retry_config, retry_async
from app.modules.transcoding.abr import RenditionSpec, plan_ladder
from app.modules.transcoding.coordinator import StatusCoordinator
from app.modules.transcoding.exceptions import (
    IneligibleJob,
    ProbeError,
    SegmentUploadError,
    TierEncodeError,
)
from app.modules.transcoding.ffmpeg import FFmpegHLSEncoder, FFprobeProber
from app.modules.transcoding.publisher import PublishedRendition, SegmentPublisher
from app.modules.video.models import TranscodingStatus
from app.modules.video.repository import AssetNotFoundError, CatalogStore

logger = logging.getLogger(__name__)


class TranscodePipeline:
    """Runs transcode jobs against a catalog and an object store.

    The prober and encoder only need ``probe(source)`` and
    ``encode(source, tier, work_dir)``; both are called from a worker thread.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        storage: Storage,
        prober=None,
        encoder=None,
        publisher: Optional[SegmentPublisher] = None,
        coordinator: Optional[StatusCoordinator] = None,
        workspace_root: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.catalog = catalog
        self.storage = storage
        self.prober = prober or FFprobeProber()
        self.encoder = encoder or FFmpegHLSEncoder()
        self.publisher = publisher or SegmentPublisher(storage)
        self.coordinator = coordinator or StatusCoordinator(catalog, storage, sleep=sleep)
        self.workspace_root = workspace_root or settings.TRANSCODE_WORKSPACE_DIR
        self._sleep = sleep

    async def run(self, asset_id: uuid.UUID, source_ref: str) -> TranscodingStatus:
        """Run one job to its terminal status.

        Jobs can be delivered more than once. A job for an asset that is not
        processing does nothing and reports the status the asset already has.

        Args:
            asset_id: Catalog ID of the asset, already marked processing
            source_ref: Storage ID of the raw upload

        Returns:
            The status of the asset once the job is done

        Raises:
            AssetNotFoundError: If the asset does not exist
            CatalogWriteError: If the terminal status could not be persisted
        """
        started = time.monotonic()
        with correlation_scope(str(asset_id)), create_span(
            "transcode.job",
            attributes={"asset.id": str(asset_id), "source.ref": source_ref},
        ) as span:
            current = await self._current_status(asset_id)
            if current != TranscodingStatus.PROCESSING:
                log_info(
                    logger,
                    f"Transcode of asset {asset_id} skipped, asset is {current.value}",
                    asset_id=str(asset_id),
                )
                span.set_attribute("transcode.status", current.value)
                return current

            log_info(logger, f"Transcode started for asset {asset_id}", asset_id=str(asset_id))
            try:
                with tempfile.TemporaryDirectory(
                    prefix=f"transcode-{asset_id}-", dir=self.workspace_root
                ) as work_dir:
                    status = await self._run_in_workspace(asset_id, source_ref, work_dir)
            except IneligibleJob as e:
                # Settled by another delivery of the same job while this one ran
                log_warning(
                    logger,
                    f"Transcode of asset {asset_id} superseded: {e.reason}",
                    asset_id=str(asset_id),
                )
                status = await self._current_status(asset_id)
            except Exception as e:
                record_exception(e)
                raise
            finally:
                TRANSCODE_JOB_DURATION_SECONDS.observe(time.monotonic() - started)

            span.set_attribute("transcode.status", status.value)
            return status

    async def _current_status(self, asset_id: uuid.UUID) -> TranscodingStatus:
        asset = await self.catalog.get(asset_id)
        if asset is None:
            raise AssetNotFoundError(f"Video asset {asset_id} not found")
        return TranscodingStatus(asset.transcoding_status)

    async def _run_in_workspace(
        self, asset_id: uuid.UUID, source_ref: str, work_dir: str
    ) -> TranscodingStatus:
        try:
            source_path = await self._fetch_source(source_ref, work_dir)
            metadata = await asyncio.to_thread(self.prober.probe, source_path)
        except ProbeError as e:
            log_warning(logger, f"Probe failed for asset {asset_id}", exception=e, asset_id=str(asset_id))
            await self.coordinator.fail(asset_id, str(e))
            return TranscodingStatus.FAILED

        plan = plan_ladder(metadata.width, metadata.height)
        log_info(
            logger,
            f"Planned {len(plan)} rendition(s) for {metadata.width}x{metadata.height} source",
            asset_id=str(asset_id),
            tiers=[tier.name for tier in plan],
            duration_seconds=metadata.duration_seconds,
        )

        rendition_map: dict[str, str] = {}
        for tier in plan:
            published = await self._produce_tier(asset_id, source_path, tier, work_dir)
            if published is not None:
                rendition_map[tier.name] = published.manifest_id

        return await self.coordinator.settle(
            asset_id,
            planned_tiers=len(plan),
            rendition_map=rendition_map,
            original_resolution=(metadata.width, metadata.height),
            raw_asset_ref=source_ref,
            duration_label=metadata.duration_label,
        )

    async def _fetch_source(self, source_ref: str, work_dir: str) -> str:
        """Download the raw upload into the workspace."""
        destination = os.path.join(work_dir, f"source{os.path.splitext(source_ref)[1]}")

        async def download() -> str:
            if not await asyncio.to_thread(self.storage.download, source_ref, destination):
                raise ProbeError(f"Source {source_ref} could not be read from storage")
            return destination

        return await retry_async(
            download,
            get_retry_config("source_download"),
            retry_on=(ProbeError,),
            description=f"download of {source_ref}",
            sleep=self._sleep,
        )

    async def _produce_tier(
        self,
        asset_id: uuid.UUID,
        source_path: str,
        tier: RenditionSpec,
        work_dir: str,
    ) -> Optional[PublishedRendition]:
        """Encode and publish one tier. Returns None if the tier was dropped."""
        tier_dir = os.path.join(work_dir, tier.name)
        os.makedirs(tier_dir, exist_ok=True)

        try:
            with create_span("transcode.encode", attributes={"tier": tier.name}):
                encode_started = time.monotonic()
                try:
                    rendition = await asyncio.to_thread(self.encoder.encode, source_path, tier, tier_dir)
                except TierEncodeError:
                    raise
                except Exception as e:
                    raise TierEncodeError(tier.name, str(e)) from e
                finally:
                    ENCODE_DURATION_SECONDS.labels(tier=tier.name).observe(
                        time.monotonic() - encode_started
                    )
        except TierEncodeError as e:
            RENDITION_FAILURES_TOTAL.labels(tier=tier.name, stage="encode").inc()
            log_error(
                logger,
                f"Encoding {tier.name} failed for asset {asset_id}, dropping tier",
                exception=e,
                asset_id=str(asset_id),
                tier=tier.name,
            )
            shutil.rmtree(tier_dir, ignore_errors=True)
            return None

        try:
            with create_span("transcode.publish", attributes={"tier": tier.name}):
                published = await self.publisher.publish_rendition(rendition)
        except SegmentUploadError as e:
            RENDITION_FAILURES_TOTAL.labels(tier=tier.name, stage="publish").inc()
            log_error(
                logger,
                f"Publishing {tier.name} failed for asset {asset_id}, dropping tier",
                exception=e,
                asset_id=str(asset_id),
                tier=tier.name,
            )
            return None
        finally:
            # Segments are either stored or abandoned; free the disk before the next tier
            shutil.rmtree(tier_dir, ignore_errors=True)

        RENDITIONS_PUBLISHED_TOTAL.labels(tier=tier.name).inc()
        log_info(
            logger,
            f"Published {tier.name} for asset {asset_id} ({len(published.segment_ids)} segments)",
            asset_id=str(asset_id),
            tier=tier.name,
            storage_id=published.manifest_id,
        )
        return published
