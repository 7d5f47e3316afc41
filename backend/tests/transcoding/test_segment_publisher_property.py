"""Property-based tests for two-phase rendition publishing.

A playlist is stored only after every one of its segments is stored, each
reference in it resolves to the uploaded bytes, and a tier with a failed
segment leaves nothing referenced behind.
"""

import asyncio
import os
import tempfile

import pytest
from hypothesis import given, settings, strategies as st

from app.core.storage import StorageResult
from app.modules.transcoding.abr import get_rendition
from app.modules.transcoding.exceptions import SegmentUploadError
from app.modules.transcoding.manifest import parse_segment_names, storage_id_from_reference
from app.modules.transcoding.publisher import SegmentPublisher

from transcoding_fakes import EventLog, FakeEncoder, RecordingStorage, segment_bytes


ENDPOINT = "/api/v1/hls"


def _encode(work_dir: str, tier_name: str, duration: float):
    tier_dir = os.path.join(work_dir, tier_name)
    os.makedirs(tier_dir, exist_ok=True)
    return FakeEncoder(duration).encode("source.mp4", get_rendition(tier_name), tier_dir)


class TestPublishRoundTrip:
    """Property tests for SegmentPublisher.publish_rendition."""

    @given(
        tier_name=st.sampled_from(["1080p", "720p", "480p", "360p"]),
        duration=st.floats(min_value=1.0, max_value=120.0),
        concurrency=st.integers(min_value=1, max_value=8),
    )
    @settings(max_examples=30, deadline=None)
    def test_every_reference_resolves_to_uploaded_bytes(
        self, tier_name: str, duration: float, concurrency: int
    ) -> None:
        with tempfile.TemporaryDirectory() as root:
            storage = RecordingStorage(os.path.join(root, "objects"))
            rendition = _encode(os.path.join(root, "work"), tier_name, duration)
            publisher = SegmentPublisher(storage, endpoint=ENDPOINT, concurrency=concurrency)

            published = asyncio.run(publisher.publish_rendition(rendition))

            manifest = storage.get(published.manifest_id).decode()
            references = parse_segment_names(manifest)
            assert len(references) == len(rendition.segment_names)
            assert all(ref.startswith(f"{ENDPOINT}?id=") for ref in references)
            for index, ref in enumerate(references):
                assert storage.get(storage_id_from_reference(ref)) == segment_bytes(tier_name, index)
            for name in rendition.segment_names:
                assert name not in manifest

    @given(duration=st.floats(min_value=1.0, max_value=120.0))
    @settings(max_examples=30, deadline=None)
    def test_manifest_stored_after_all_segments(self, duration: float) -> None:
        with tempfile.TemporaryDirectory() as root:
            events = EventLog()
            storage = RecordingStorage(os.path.join(root, "objects"), events)
            rendition = _encode(os.path.join(root, "work"), "720p", duration)

            published = asyncio.run(SegmentPublisher(storage, endpoint=ENDPOINT).publish_rendition(rendition))

            manifest_at = events.index_of("put", lambda key: key == published.manifest_id)
            segment_positions = [
                i for i, (kind, _) in enumerate(events.events) if kind == "put_file"
            ]
            assert len(segment_positions) == len(rendition.segment_names)
            assert all(position < manifest_at for position in segment_positions)


class TestPublishFailure:
    """Tests for a tier with a failed segment upload."""

    @pytest.mark.asyncio
    async def test_failed_segment_withholds_manifest(self, storage: RecordingStorage, events, workspace: str) -> None:
        rendition = _encode(workspace, "480p", 42)
        storage.fail_upload = lambda path: path.endswith("480p_002.ts")

        with pytest.raises(SegmentUploadError) as exc_info:
            await SegmentPublisher(storage, endpoint=ENDPOINT).publish_rendition(rendition)

        assert exc_info.value.tier == "480p"
        assert exc_info.value.segment == "480p_002.ts"
        assert "put" not in events.kinds()

    @pytest.mark.asyncio
    async def test_stored_segments_of_failed_tier_are_removed(self, storage: RecordingStorage, workspace: str) -> None:
        rendition = _encode(workspace, "480p", 42)
        storage.fail_upload = lambda path: path.endswith("480p_004.ts")

        with pytest.raises(SegmentUploadError):
            await SegmentPublisher(storage, endpoint=ENDPOINT).publish_rendition(rendition)

        stored = list(storage.uploaded_files.values())
        assert len(stored) == 4
        assert sorted(storage.deleted) == sorted(stored)
        for storage_id in stored:
            assert not storage.exists(storage_id)

    @pytest.mark.asyncio
    async def test_manifest_upload_failure(self, storage: RecordingStorage, workspace: str) -> None:
        rendition = _encode(workspace, "360p", 12)

        def failing_put(data, content_type="application/octet-stream"):
            return StorageResult(success=False, key="", error_message="bucket unavailable")

        storage.put = failing_put
        with pytest.raises(SegmentUploadError):
            await SegmentPublisher(storage, endpoint=ENDPOINT).publish_rendition(rendition)

        assert len(storage.deleted) == 2
