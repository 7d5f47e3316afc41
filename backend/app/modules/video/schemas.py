"""Pydantic schemas for video assets."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ResolutionResponse(BaseModel):
    width: int
    height: int


class VideoAssetResponse(BaseModel):
    """Schema for a video asset's transcoding state."""
    id: UUID
    title: str
    raw_asset_ref: Optional[str]
    rendition_map: dict[str, str]
    original_resolution: Optional[ResolutionResponse]
    transcoding_status: str
    is_transcoded: bool
    duration: str
    uploaded_at: Optional[datetime]

    class Config:
        from_attributes = True
