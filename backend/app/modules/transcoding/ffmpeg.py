"""FFmpeg and ffprobe wrappers.

The pipeline only sees two narrow calls: ``probe(source) -> VideoMetadata``
and ``encode(source, tier, work_dir) -> EncodedRendition``. Both are
synchronous and blocking; callers run them in a worker thread.
"""

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from app.core.config import settings
from app.modules.transcoding.abr import RenditionSpec, SEGMENT_DURATION_SECONDS
from app.modules.transcoding.exceptions import ProbeError, TierEncodeError
from app.modules.transcoding.manifest import parse_segment_names

logger = logging.getLogger(__name__)


def format_duration_label(seconds: float) -> str:
    """Format a duration for display: ``m:ss``, or ``h:mm:ss`` past an hour."""
    total = max(int(round(seconds)), 0)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


@dataclass
class VideoMetadata:
    """Source properties extracted by the prober."""
    width: int
    height: int
    duration_seconds: float

    @property
    def duration_label(self) -> str:
        return format_duration_label(self.duration_seconds)


@dataclass
class EncodedRendition:
    """Output of one tier's encode, still in the job workspace."""
    tier: RenditionSpec
    manifest_path: str
    # Segment URI as written in the manifest -> local file, in playback order
    segment_paths: dict[str, str] = field(default_factory=dict)

    @property
    def segment_names(self) -> list[str]:
        return list(self.segment_paths)


def _as_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(raw: str) -> VideoMetadata:
    """Parse ``ffprobe -print_format json`` output.

    Uses the first video stream with usable dimensions. Duration comes from
    the container and falls back to the stream; a missing duration is 0.

    Raises:
        ProbeError: If the output is not JSON or has no decodable video stream
    """
    try:
        info = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ProbeError(f"Unparsable probe output: {e}") from e

    if not isinstance(info, dict):
        raise ProbeError("Unparsable probe output: not an object")

    stream = None
    for candidate in info.get("streams") or []:
        if candidate.get("codec_type") != "video":
            continue
        try:
            width = int(candidate.get("width") or 0)
            height = int(candidate.get("height") or 0)
        except (TypeError, ValueError):
            continue
        if width > 0 and height > 0:
            stream = candidate
            break

    if stream is None:
        raise ProbeError("No decodable video stream found")

    duration = _as_float((info.get("format") or {}).get("duration"))
    if duration is None:
        duration = _as_float(stream.get("duration"))

    return VideoMetadata(
        width=int(stream["width"]),
        height=int(stream["height"]),
        duration_seconds=duration or 0.0,
    )


class FFprobeProber:
    """Extracts source metadata with ffprobe."""

    def __init__(self, ffprobe_path: Optional[str] = None, timeout: Optional[float] = None):
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH
        self.timeout = timeout if timeout is not None else settings.TRANSCODE_PROBE_TIMEOUT_SECONDS

    def build_probe_command(self, source: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            source,
        ]

    def probe(self, source: str) -> VideoMetadata:
        """Probe a local source file.

        Raises:
            ProbeError: If ffprobe fails, times out or reports no video stream
        """
        cmd = self.build_probe_command(source)
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, check=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"ffprobe timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            raise ProbeError(f"ffprobe exited with {e.returncode}") from e
        except OSError as e:
            raise ProbeError(f"ffprobe could not be started: {e}") from e

        return parse_probe_output(result.stdout)


class FFmpegHLSEncoder:
    """Encodes one ladder tier into an HLS VOD rendition.

    Each tier produces ``<tier>.m3u8`` plus ``<tier>_000.ts``, ``<tier>_001.ts``
    ... in the work directory.
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        segment_seconds: Optional[int] = None,
        timeout: Optional[float] = None,
        preset: str = "veryfast",
        audio_bitrate: str = "128k",
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.segment_seconds = segment_seconds or settings.TRANSCODE_SEGMENT_SECONDS or SEGMENT_DURATION_SECONDS
        self.timeout = timeout if timeout is not None else settings.TRANSCODE_ENCODE_TIMEOUT_SECONDS
        self.preset = preset
        self.audio_bitrate = audio_bitrate

    @staticmethod
    def manifest_name(tier: RenditionSpec) -> str:
        return f"{tier.name}.m3u8"

    @staticmethod
    def segment_pattern(tier: RenditionSpec) -> str:
        return f"{tier.name}_%03d.ts"

    def build_encode_command(self, source: str, tier: RenditionSpec, work_dir: str) -> list[str]:
        """Build the FFmpeg command for one tier.

        Args:
            source: Local path of the source video
            tier: Ladder tier to encode
            work_dir: Directory receiving the playlist and segments

        Returns:
            FFmpeg command as list of arguments
        """
        width, height = tier.target_width, tier.target_height
        bitrate = tier.target_bitrate

        return [
            self.ffmpeg_path,
            "-y",
            "-i", source,
            # Video settings
            "-c:v", "libx264",
            "-preset", self.preset,
            "-b:v", tier.bitrate_arg,
            "-maxrate", f"{int(bitrate * 1.5)}k",
            "-bufsize", f"{bitrate * 2}k",
            "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease,pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
            "-pix_fmt", "yuv420p",
            # Keyframe on every segment boundary so segments cut at the target
            "-force_key_frames", f"expr:gte(t,n_forced*{self.segment_seconds})",
            # Audio settings
            "-c:a", "aac",
            "-b:a", self.audio_bitrate,
            "-ac", "2",
            # Output format
            "-f", "hls",
            "-hls_time", str(self.segment_seconds),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", os.path.join(work_dir, self.segment_pattern(tier)),
            os.path.join(work_dir, self.manifest_name(tier)),
        ]

    def encode(self, source: str, tier: RenditionSpec, work_dir: str) -> EncodedRendition:
        """Encode one tier. Exactly one attempt is made.

        Raises:
            TierEncodeError: If ffmpeg fails or times out, or its output is incomplete
        """
        cmd = self.build_encode_command(source, tier, work_dir)
        logger.debug(f"Encoding {tier.name}: {' '.join(cmd)}")

        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise TierEncodeError(tier.name, f"ffmpeg timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr_tail = (e.stderr or "").strip().splitlines()[-1:] or [""]
            raise TierEncodeError(
                tier.name, f"ffmpeg exited with {e.returncode}: {stderr_tail[0]}"
            ) from e
        except OSError as e:
            raise TierEncodeError(tier.name, f"ffmpeg could not be started: {e}") from e

        return collect_rendition(tier, os.path.join(work_dir, self.manifest_name(tier)))


def collect_rendition(tier: RenditionSpec, manifest_path: str) -> EncodedRendition:
    """Read an encoded playlist and resolve its segments to local files.

    Raises:
        TierEncodeError: If the playlist or any segment it lists is missing
    """
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise TierEncodeError(tier.name, f"manifest not produced: {e}") from e

    work_dir = os.path.dirname(manifest_path)
    segment_paths = {}
    for name in parse_segment_names(text):
        path = os.path.join(work_dir, os.path.basename(name))
        if not os.path.isfile(path):
            raise TierEncodeError(tier.name, f"segment {name} missing from output")
        segment_paths[name] = path

    if not segment_paths:
        raise TierEncodeError(tier.name, "manifest lists no segments")

    return EncodedRendition(tier=tier, manifest_path=manifest_path, segment_paths=segment_paths)
