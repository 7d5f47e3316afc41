"""Catalog store for video assets.

The pipeline talks to the catalog through ``get``, ``patch``,
``mark_processing`` and ``patch_if_processing``. Both patch calls only write
the columns they are given, so concurrent writers of unrelated fields are
never clobbered.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.video.models import VideoAsset, TranscodingStatus


PATCHABLE_FIELDS = frozenset({
    "raw_asset_ref",
    "rendition_map",
    "original_width",
    "original_height",
    "transcoding_status",
    "is_transcoded",
    "duration",
})


class AssetNotFoundError(Exception):
    """Raised when a catalog operation targets an unknown asset."""


class CatalogStore(ABC):
    """Narrow catalog interface used by the transcoding pipeline."""

    @abstractmethod
    async def get(self, asset_id: uuid.UUID) -> Optional[VideoAsset]:
        """Return the current record, or None."""

    @abstractmethod
    async def patch(self, asset_id: uuid.UUID, fields: dict[str, Any]) -> None:
        """Durably write only the given fields.

        Raises:
            AssetNotFoundError: If the asset does not exist
        """

    @abstractmethod
    async def mark_processing(self, asset_id: uuid.UUID) -> bool:
        """Atomically move an eligible asset to processing.

        Eligible means not already processing and not yet transcoded. Returns
        False, without writing anything, when the asset is not eligible.
        """

    @abstractmethod
    async def patch_if_processing(self, asset_id: uuid.UUID, fields: dict[str, Any]) -> bool:
        """Write the given fields only while the asset is processing.

        Used for the terminal status writes, so an asset never reaches
        completed or failed without passing through processing. Returns
        False, without writing anything, when the asset is in any other
        status.

        Raises:
            AssetNotFoundError: If the asset does not exist
        """


def validate_patch_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not patchable: {sorted(unknown)}")


class VideoAssetRepository(CatalogStore):
    """SQLAlchemy implementation of the catalog store.

    Every write commits before returning: callers rely on a returned
    ``patch`` meaning the data is durable.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get(self, asset_id: uuid.UUID) -> Optional[VideoAsset]:
        result = await self.session.execute(
            select(VideoAsset)
            .where(VideoAsset.id == asset_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def patch(self, asset_id: uuid.UUID, fields: dict[str, Any]) -> None:
        validate_patch_fields(fields)
        if not fields:
            return

        try:
            result = await self.session.execute(
                update(VideoAsset)
                .where(VideoAsset.id == asset_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise AssetNotFoundError(f"Video asset {asset_id} not found")
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def mark_processing(self, asset_id: uuid.UUID) -> bool:
        # Single conditional UPDATE: two concurrent dispatches cannot both win.
        try:
            result = await self.session.execute(
                update(VideoAsset)
                .where(
                    VideoAsset.id == asset_id,
                    VideoAsset.transcoding_status != TranscodingStatus.PROCESSING.value,
                    VideoAsset.is_transcoded.is_(False),
                )
                .values(transcoding_status=TranscodingStatus.PROCESSING.value)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return result.rowcount == 1

    async def patch_if_processing(self, asset_id: uuid.UUID, fields: dict[str, Any]) -> bool:
        validate_patch_fields(fields)

        try:
            result = await self.session.execute(
                update(VideoAsset)
                .where(
                    VideoAsset.id == asset_id,
                    VideoAsset.transcoding_status == TranscodingStatus.PROCESSING.value,
                )
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if result.rowcount == 1:
            return True
        if await self.get(asset_id) is None:
            raise AssetNotFoundError(f"Video asset {asset_id} not found")
        return False

    async def create(
        self,
        title: str,
        raw_asset_ref: Optional[str],
        duration: str = "",
    ) -> VideoAsset:
        """Create a catalog record for a freshly uploaded video."""
        asset = VideoAsset(
            title=title,
            raw_asset_ref=raw_asset_ref,
            duration=duration,
            rendition_map={},
            transcoding_status=TranscodingStatus.PENDING.value,
            is_transcoded=False,
        )
        self.session.add(asset)
        await self.session.commit()
        await self.session.refresh(asset)
        return asset
