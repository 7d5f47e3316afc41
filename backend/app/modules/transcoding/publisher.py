"""Two-phase publishing of encoded renditions.

Phase 1 stores every segment of a tier. Phase 2 rewrites the playlist to
point at the stored segments and stores the playlist. Phase 2 never starts
unless phase 1 stored every segment, so a published playlist never holds a
reference to a missing segment.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.core.config import settings
from app.core.logging import log_warning
from app.core.metrics import SEGMENT_UPLOADS_TOTAL
from app.core.storage import HLS_PLAYLIST_TYPE, MPEG_TS_TYPE, Storage
from app.modules.transcoding.exceptions import SegmentUploadError
from app.modules.transcoding.ffmpeg import EncodedRendition
from app.modules.transcoding.manifest import rewrite_manifest

logger = logging.getLogger(__name__)


@dataclass
class PublishedRendition:
    """A tier whose playlist and segments are durably stored."""
    tier: str
    manifest_id: str
    segment_ids: list[str] = field(default_factory=list)


class SegmentPublisher:
    """Uploads renditions to object storage.

    Args:
        storage: Object storage the player-facing endpoint reads from
        endpoint: Public path of the retrieval endpoint
        concurrency: Maximum segment uploads in flight for one tier
    """

    def __init__(
        self,
        storage: Storage,
        endpoint: Optional[str] = None,
        concurrency: Optional[int] = None,
    ):
        self.storage = storage
        self.endpoint = endpoint or settings.HLS_ENDPOINT
        self.concurrency = max(concurrency or settings.TRANSCODE_UPLOAD_CONCURRENCY, 1)

    async def publish_rendition(self, rendition: EncodedRendition) -> PublishedRendition:
        """Publish one tier.

        Raises:
            SegmentUploadError: If any segment or the playlist could not be
                stored. Segments already stored for the tier are deleted.
        """
        tier = rendition.tier.name

        # Phase 1: segments
        storage_ids = await self._upload_segments(rendition)

        # Phase 2: playlist
        try:
            with open(rendition.manifest_path, "r", encoding="utf-8") as f:
                text = f.read()
            rewritten = rewrite_manifest(text, storage_ids, self.endpoint)
        except (OSError, KeyError) as e:
            await self._discard(tier, list(storage_ids.values()))
            raise SegmentUploadError(tier, rendition.manifest_path, f"manifest unreadable: {e}") from e

        result = await asyncio.to_thread(
            self.storage.put, rewritten.encode("utf-8"), HLS_PLAYLIST_TYPE
        )
        if not result.success:
            await self._discard(tier, list(storage_ids.values()))
            raise SegmentUploadError(tier, rendition.manifest_path, result.error_message)

        return PublishedRendition(
            tier=tier,
            manifest_id=result.key,
            segment_ids=list(storage_ids.values()),
        )

    async def _upload_segments(self, rendition: EncodedRendition) -> dict[str, str]:
        """Upload all segments of a tier concurrently.

        Returns:
            Segment URI -> storage ID, in playlist order
        """
        tier = rendition.tier.name
        semaphore = asyncio.Semaphore(self.concurrency)

        async def upload(name: str, path: str) -> str:
            async with semaphore:
                result = await asyncio.to_thread(self.storage.put_file, path, MPEG_TS_TYPE)
            if not result.success:
                raise SegmentUploadError(tier, name, result.error_message)
            return result.key

        names = rendition.segment_names
        outcomes = await asyncio.gather(
            *(upload(name, rendition.segment_paths[name]) for name in names),
            return_exceptions=True,
        )

        stored: dict[str, str] = {}
        failures: list[tuple[str, BaseException]] = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                failures.append((name, outcome))
            else:
                stored[name] = outcome

        SEGMENT_UPLOADS_TOTAL.labels(result="success").inc(len(stored))
        if failures:
            SEGMENT_UPLOADS_TOTAL.labels(result="failure").inc(len(failures))
            await self._discard(tier, list(stored.values()))
            name, error = failures[0]
            if isinstance(error, SegmentUploadError):
                raise error
            raise SegmentUploadError(tier, name, str(error)) from error

        return stored

    async def _discard(self, tier: str, storage_ids: list[str]) -> None:
        """Best-effort removal of segments that will never be referenced."""
        for storage_id in storage_ids:
            try:
                deleted = await asyncio.to_thread(self.storage.delete, storage_id)
            except Exception as e:
                log_warning(
                    logger,
                    f"Error deleting orphaned segment {storage_id}",
                    exception=e,
                    tier=tier,
                    storage_id=storage_id,
                )
                continue
            if not deleted:
                log_warning(
                    logger,
                    f"Orphaned segment {storage_id} left in storage",
                    tier=tier,
                    storage_id=storage_id,
                )
