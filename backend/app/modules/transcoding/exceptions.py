"""Transcoding pipeline errors.

Only ProbeError and CatalogWriteError are fatal to a job. Tier, segment and
cleanup errors are contained where they occur and surface in logs and
metrics only.
"""

from typing import Optional


class TranscodingError(Exception):
    """Base exception for transcoding pipeline errors."""
    pass


class IneligibleJob(TranscodingError):
    """Dispatch rejected: asset already transcoded, mid-processing or not a video."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ProbeError(TranscodingError):
    """Source has no decodable video stream or prober output was unusable."""
    pass


class TierEncodeError(TranscodingError):
    """One tier's encode attempt failed."""

    def __init__(self, tier: str, message: str):
        self.tier = tier
        super().__init__(f"{tier}: {message}")


class SegmentUploadError(TranscodingError):
    """A segment (or manifest) of a tier could not be stored."""

    def __init__(self, tier: str, segment: str, message: Optional[str] = None):
        self.tier = tier
        self.segment = segment
        detail = f": {message}" if message else ""
        super().__init__(f"{tier}/{segment}{detail}")


class CleanupError(TranscodingError):
    """Raw asset deletion failed after a successful transcode."""
    pass


class CatalogWriteError(TranscodingError):
    """Final catalog write did not succeed within its retry budget."""
    pass


class ObjectNotFoundError(TranscodingError):
    """No stored object behind a storage ID presented for retrieval."""
    pass
