"""Video asset catalog module."""

from app.modules.video.models import VideoAsset, TranscodingStatus
from app.modules.video.repository import (
    AssetNotFoundError,
    CatalogStore,
    VideoAssetRepository,
)

__all__ = [
    "VideoAsset",
    "TranscodingStatus",
    "AssetNotFoundError",
    "CatalogStore",
    "VideoAssetRepository",
]
