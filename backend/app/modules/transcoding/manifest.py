"""HLS playlist handling.

A media playlist is line oriented: lines starting with ``#`` are tags or
comments, every other non-blank line is a segment URI. Publishing swaps each
segment URI for an indirection reference ``{endpoint}?id={storage_id}`` and
leaves every other line untouched.
"""

from typing import Mapping, Optional
from urllib.parse import parse_qs, urlsplit


def _is_uri_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


def parse_segment_names(text: str) -> list[str]:
    """Return the segment URIs of a media playlist in playback order."""
    return [line.strip() for line in text.splitlines() if _is_uri_line(line)]


def indirection_reference(endpoint: str, storage_id: str) -> str:
    return f"{endpoint}?id={storage_id}"


def storage_id_from_reference(reference: str) -> Optional[str]:
    """Extract the storage ID from an indirection reference, if present."""
    values = parse_qs(urlsplit(reference).query).get("id")
    return values[0] if values else None


def rewrite_manifest(text: str, storage_ids: Mapping[str, str], endpoint: str) -> str:
    """Replace every segment URI with its indirection reference.

    Args:
        text: Playlist as written by the encoder
        storage_ids: Segment URI -> storage ID of the uploaded segment
        endpoint: Public path of the retrieval endpoint

    Returns:
        The rewritten playlist

    Raises:
        KeyError: If a segment URI has no uploaded counterpart
    """
    lines = []
    for line in text.splitlines():
        if _is_uri_line(line):
            line = indirection_reference(endpoint, storage_ids[line.strip()])
        lines.append(line)

    rewritten = "\n".join(lines)
    if text.endswith("\n"):
        rewritten += "\n"
    return rewritten
