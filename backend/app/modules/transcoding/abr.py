"""Adaptive bitrate (ABR) rendition ladder.

The ladder is static. Planning picks the tiers a source can feed without
upscaling; a source smaller than every tier gets an empty plan, which is a
valid outcome and not an error.
"""

from dataclasses import dataclass
from typing import Sequence


SEGMENT_DURATION_SECONDS = 10


@dataclass(frozen=True)
class RenditionSpec:
    """A single tier of the ABR ladder."""
    name: str
    target_width: int
    target_height: int
    target_bitrate: int  # kbps

    @property
    def bitrate_arg(self) -> str:
        """Bitrate in the form ffmpeg expects (``5000k``)."""
        return f"{self.target_bitrate}k"

    def fits_within(self, width: int, height: int) -> bool:
        return self.target_width <= width and self.target_height <= height


# Descending resolution; planning preserves this order
RENDITION_LADDER: tuple[RenditionSpec, ...] = (
    RenditionSpec("2160p", 3840, 2160, 15000),
    RenditionSpec("1440p", 2560, 1440, 8000),
    RenditionSpec("1080p", 1920, 1080, 5000),
    RenditionSpec("720p", 1280, 720, 2500),
    RenditionSpec("480p", 854, 480, 1000),
    RenditionSpec("360p", 640, 360, 600),
)

TIER_NAMES = tuple(spec.name for spec in RENDITION_LADDER)


def plan_ladder(
    width: int,
    height: int,
    ladder: Sequence[RenditionSpec] = RENDITION_LADDER,
) -> list[RenditionSpec]:
    """Plan the renditions a source of the given size can produce.

    Args:
        width: Source width in pixels
        height: Source height in pixels
        ladder: Tiers in descending resolution order

    Returns:
        Every tier whose target width and height are both within the source,
        in ladder order. Empty when the source is smaller than every tier.
    """
    return [spec for spec in ladder if spec.fits_within(width, height)]


def get_rendition(name: str) -> RenditionSpec:
    """Look up a ladder tier by name."""
    for spec in RENDITION_LADDER:
        if spec.name == name:
            return spec
    raise KeyError(name)


def expected_segment_count(duration_seconds: float, segment_seconds: int = SEGMENT_DURATION_SECONDS) -> int:
    """Number of segments a VOD encode of the given duration produces."""
    if duration_seconds <= 0:
        return 0
    whole, rest = divmod(duration_seconds, segment_seconds)
    return int(whole) + (1 if rest > 0 else 0)
