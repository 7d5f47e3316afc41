"""Pydantic schemas for the transcoding API."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.core.storage import is_valid_storage_id
from app.modules.transcoding.abr import TIER_NAMES


class TranscodeJobRequest(BaseModel):
    """Schema for triggering a transcode job."""
    asset_id: UUID
    source_storage_id: str = Field(..., min_length=1, description="Storage ID of the raw upload")


class TranscodeJobResponse(BaseModel):
    """Schema for the job trigger outcome."""
    accepted: bool
    reason: Optional[str] = None


class OriginalResolution(BaseModel):
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class CompletionRequest(BaseModel):
    """Schema for the completion callback."""
    asset_id: UUID
    rendition_map: dict[str, str] = Field(default_factory=dict, description="Tier name -> manifest storage ID")
    original_resolution: OriginalResolution
    duration: Optional[str] = Field(None, max_length=20)

    @field_validator("rendition_map")
    @classmethod
    def validate_rendition_map(cls, v: dict[str, str]) -> dict[str, str]:
        unknown = [name for name in v if name not in TIER_NAMES]
        if unknown:
            raise ValueError(f"Unknown rendition tiers: {unknown}")
        invalid = [storage_id for storage_id in v.values() if not is_valid_storage_id(storage_id)]
        if invalid:
            raise ValueError(f"Invalid manifest storage IDs: {invalid}")
        return v
