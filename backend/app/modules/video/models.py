"""Catalog model for uploaded creator videos.

The pipeline only ever mutates a VideoAsset; creation belongs to the upload
flow and rows are never deleted here.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class TranscodingStatus(str, Enum):
    """Transcoding state of a video asset.

    Moves pending -> processing -> completed | failed. A failed asset may be
    dispatched again, which moves it back to processing.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoAsset(Base):
    """An uploaded video and its published HLS renditions."""

    __tablename__ = "video_assets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)

    # Storage ID of the uploaded original; cleared once renditions are durable
    raw_asset_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Tier name -> manifest storage ID. Plain JSON (not JSONB) keeps key order,
    # which is the descending-resolution order the pipeline writes.
    rendition_map: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    original_width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    original_height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    transcoding_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TranscodingStatus.PENDING.value, index=True
    )
    is_transcoded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Display label such as "0:42"
    duration: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def original_resolution(self) -> Optional[dict]:
        if self.original_width is None or self.original_height is None:
            return None
        return {"width": self.original_width, "height": self.original_height}

    def is_eligible_for_transcode(self) -> bool:
        """Check the dispatch guard against this snapshot."""
        return (
            self.transcoding_status != TranscodingStatus.PROCESSING.value
            and not self.is_transcoded
        )

    def __repr__(self) -> str:
        return (
            f"<VideoAsset(id={self.id}, title={self.title}, "
            f"transcoding_status={self.transcoding_status})>"
        )
