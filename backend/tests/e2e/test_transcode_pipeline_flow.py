"""End-to-end tests for the transcoding pipeline.

Runs dispatch and the full job against the in-memory catalog, local object
storage, and ffmpeg-shaped fake encoder output.

**Validates: ladder planning, best-effort encode/publish, status machine,
raw asset cleanup**
"""

import os

import pytest

from app.modules.transcoding.ffmpeg import VideoMetadata
from app.modules.transcoding.manifest import parse_segment_names, storage_id_from_reference
from app.modules.transcoding.pipeline import TranscodePipeline
from app.modules.transcoding.service import TranscodingService
from app.modules.video.models import TranscodingStatus

from transcoding_fakes import FakeEncoder, FakeProber, no_sleep, segment_bytes


def _pipeline(catalog, storage, workspace, metadata, encoder=None):
    return TranscodePipeline(
        catalog,
        storage,
        prober=FakeProber(metadata),
        encoder=encoder or FakeEncoder(metadata.duration_seconds if metadata else 0),
        workspace_root=workspace,
        sleep=no_sleep,
    )


class TestFullHDScenario:
    """1920x1080, 42 second source."""

    @pytest.mark.asyncio
    async def test_full_flow(self, catalog, storage, workspace, raw_source) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source)
        queued = []
        await TranscodingService(catalog, storage, enqueue=lambda *a: queued.append(a)).dispatch(
            asset.id, raw_source
        )
        assert queued == [(asset.id, raw_source)]

        metadata = VideoMetadata(width=1920, height=1080, duration_seconds=42.0)
        encoder = FakeEncoder(42.0)
        status = await _pipeline(catalog, storage, workspace, metadata, encoder).run(asset.id, raw_source)

        assert status == TranscodingStatus.COMPLETED
        assert encoder.encoded == ["1080p", "720p", "480p", "360p"]
        assert list(asset.rendition_map) == ["1080p", "720p", "480p", "360p"]
        assert catalog.status_history[asset.id] == ["pending", "processing", "completed"]
        assert asset.is_transcoded is True
        assert asset.original_resolution == {"width": 1920, "height": 1080}
        assert asset.duration == "0:42"

        for tier, manifest_id in asset.rendition_map.items():
            manifest = storage.get(manifest_id).decode()
            references = parse_segment_names(manifest)
            assert len(references) == 5
            for index, ref in enumerate(references):
                assert storage.get(storage_id_from_reference(ref)) == segment_bytes(tier, index)

        assert not storage.exists(raw_source)
        assert asset.raw_asset_ref is None
        completion_at = catalog.events.index_of(
            "patch", lambda fields: fields.get("transcoding_status") == "completed"
        )
        assert completion_at < catalog.events.index_of("delete", lambda sid: sid == raw_source)

    @pytest.mark.asyncio
    async def test_workspace_removed_after_job(self, catalog, storage, workspace, raw_source) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source, status=TranscodingStatus.PROCESSING.value)
        metadata = VideoMetadata(width=1920, height=1080, duration_seconds=42.0)
        await _pipeline(catalog, storage, workspace, metadata).run(asset.id, raw_source)
        assert os.listdir(workspace) == []


class TestSmallSourceScenario:
    """480x270 source, smaller than every tier."""

    @pytest.mark.asyncio
    async def test_empty_ladder_reaches_terminal_status(self, catalog, storage, workspace, raw_source) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source)
        await TranscodingService(catalog, storage).dispatch(asset.id, raw_source)

        metadata = VideoMetadata(width=480, height=270, duration_seconds=8.0)
        encoder = FakeEncoder(8.0)
        status = await _pipeline(catalog, storage, workspace, metadata, encoder).run(asset.id, raw_source)

        assert status == TranscodingStatus.COMPLETED
        assert encoder.encoded == []
        assert asset.rendition_map == {}
        assert catalog.status_history[asset.id] == ["pending", "processing", "completed"]
        # Only playable copy; kept
        assert storage.exists(raw_source)


class TestPartialFailure:
    """Best-effort ladder behaviour."""

    @pytest.mark.asyncio
    async def test_one_tier_upload_failure(self, catalog, storage, workspace, raw_source) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source, status=TranscodingStatus.PROCESSING.value)
        storage.fail_upload = lambda path: os.path.basename(path) == "720p_003.ts"

        metadata = VideoMetadata(width=1920, height=1080, duration_seconds=42.0)
        status = await _pipeline(catalog, storage, workspace, metadata).run(asset.id, raw_source)

        assert status == TranscodingStatus.COMPLETED
        assert list(asset.rendition_map) == ["1080p", "480p", "360p"]
        assert asset.transcoding_status == TranscodingStatus.COMPLETED.value
        orphaned = [sid for name, sid in storage.uploaded_files.items() if name.startswith("720p_")]
        assert len(orphaned) == 4
        assert all(not storage.exists(sid) for sid in orphaned)

    @pytest.mark.asyncio
    async def test_one_tier_encode_failure(self, catalog, storage, workspace, raw_source) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source, status=TranscodingStatus.PROCESSING.value)
        encoder = FakeEncoder(42.0, fail_tiers=("1080p",))

        metadata = VideoMetadata(width=1920, height=1080, duration_seconds=42.0)
        status = await _pipeline(catalog, storage, workspace, metadata, encoder).run(asset.id, raw_source)

        assert status == TranscodingStatus.COMPLETED
        assert encoder.encoded == ["1080p", "720p", "480p", "360p"]
        assert list(asset.rendition_map) == ["720p", "480p", "360p"]

    @pytest.mark.asyncio
    async def test_unexpected_encoder_exception_drops_tier(self, catalog, storage, workspace, raw_source) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source, status=TranscodingStatus.PROCESSING.value)

        class CrashingEncoder(FakeEncoder):
            def encode(self, source, tier, work_dir):
                if tier.name == "480p":
                    raise RuntimeError("segfault")
                return super().encode(source, tier, work_dir)

        metadata = VideoMetadata(width=1280, height=720, duration_seconds=20.0)
        status = await _pipeline(catalog, storage, workspace, metadata, CrashingEncoder(20.0)).run(
            asset.id, raw_source
        )

        assert status == TranscodingStatus.COMPLETED
        assert list(asset.rendition_map) == ["720p", "360p"]

    @pytest.mark.asyncio
    async def test_every_tier_failing_marks_failed(self, catalog, storage, workspace, raw_source) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source, status=TranscodingStatus.PROCESSING.value)
        encoder = FakeEncoder(42.0, fail_tiers=("720p", "480p", "360p"))

        metadata = VideoMetadata(width=1280, height=720, duration_seconds=42.0)
        status = await _pipeline(catalog, storage, workspace, metadata, encoder).run(asset.id, raw_source)

        assert status == TranscodingStatus.FAILED
        assert asset.transcoding_status == TranscodingStatus.FAILED.value
        assert asset.is_transcoded is False
        assert storage.exists(raw_source)


class TestProbeFailure:
    """Undecodable source."""

    @pytest.mark.asyncio
    async def test_probe_error_fails_job_and_keeps_raw(self, catalog, storage, workspace, raw_source) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source, status=TranscodingStatus.PROCESSING.value)
        encoder = FakeEncoder(0)

        pipeline = TranscodePipeline(
            catalog, storage, prober=FakeProber(None), encoder=encoder,
            workspace_root=workspace, sleep=no_sleep,
        )
        status = await pipeline.run(asset.id, raw_source)

        assert status == TranscodingStatus.FAILED
        assert encoder.encoded == []
        assert storage.exists(raw_source)
        assert "delete" not in catalog.events.kinds()

    @pytest.mark.asyncio
    async def test_unreadable_source_fails_job(self, catalog, storage, workspace) -> None:
        missing = "0" * 32 + ".mp4"
        asset = catalog.add_asset(raw_asset_ref=missing, status=TranscodingStatus.PROCESSING.value)
        prober = FakeProber(VideoMetadata(1920, 1080, 42.0))

        pipeline = TranscodePipeline(
            catalog, storage, prober=prober, encoder=FakeEncoder(42.0),
            workspace_root=workspace, sleep=no_sleep,
        )
        status = await pipeline.run(asset.id, missing)

        assert status == TranscodingStatus.FAILED
        assert prober.sources == []



class TestRedelivery:
    """Jobs delivered more than once settle an asset exactly once."""

    @pytest.mark.asyncio
    async def test_second_delivery_after_completion_is_a_no_op(
        self, catalog, storage, workspace, raw_source
    ) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source, status=TranscodingStatus.PROCESSING.value)
        metadata = VideoMetadata(width=1920, height=1080, duration_seconds=42.0)
        prober = FakeProber(metadata)
        encoder = FakeEncoder(42.0)
        pipeline = TranscodePipeline(
            catalog, storage, prober=prober, encoder=encoder,
            workspace_root=workspace, sleep=no_sleep,
        )

        first = await pipeline.run(asset.id, raw_source)
        rendition_map = dict(asset.rendition_map)
        second = await pipeline.run(asset.id, raw_source)

        assert first == TranscodingStatus.COMPLETED
        assert second == TranscodingStatus.COMPLETED
        assert catalog.status_history[asset.id] == ["processing", "completed"]
        assert asset.is_transcoded is True
        assert asset.rendition_map == rendition_map
        assert len(prober.sources) == 1
        assert encoder.encoded == ["1080p", "720p", "480p", "360p"]

    @pytest.mark.asyncio
    async def test_job_for_undispatched_asset_does_nothing(
        self, catalog, storage, workspace, raw_source
    ) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source)
        prober = FakeProber(VideoMetadata(1920, 1080, 42.0))
        pipeline = TranscodePipeline(
            catalog, storage, prober=prober, encoder=FakeEncoder(42.0),
            workspace_root=workspace, sleep=no_sleep,
        )

        status = await pipeline.run(asset.id, raw_source)

        assert status == TranscodingStatus.PENDING
        assert prober.sources == []
        assert catalog.patch_count == 0
        assert storage.exists(raw_source)

    @pytest.mark.asyncio
    async def test_asset_settled_elsewhere_mid_job_is_not_overwritten(
        self, catalog, storage, workspace, raw_source
    ) -> None:
        asset = catalog.add_asset(raw_asset_ref=raw_source, status=TranscodingStatus.PROCESSING.value)

        class SettlingEncoder(FakeEncoder):
            def encode(self, source, tier, work_dir):
                # Another delivery of the job fails the asset meanwhile
                asset.transcoding_status = TranscodingStatus.FAILED.value
                return super().encode(source, tier, work_dir)

        metadata = VideoMetadata(width=1280, height=720, duration_seconds=20.0)
        status = await _pipeline(catalog, storage, workspace, metadata, SettlingEncoder(20.0)).run(
            asset.id, raw_source
        )

        assert status == TranscodingStatus.FAILED
        assert asset.is_transcoded is False
        assert asset.rendition_map == {}
        assert "patch_rejected" in catalog.events.kinds()
        assert storage.exists(raw_source)
        assert os.listdir(workspace) == []
