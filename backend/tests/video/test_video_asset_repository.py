"""Tests for the SQLAlchemy catalog store.

Runs against a throwaway SQLite database through aiosqlite; the statements
are the same conditional and partial UPDATEs issued against PostgreSQL.
"""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database import Base
from app.modules.video.models import TranscodingStatus
from app.modules.video.repository import AssetNotFoundError, VideoAssetRepository


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def asset_id(session_maker) -> uuid.UUID:
    async with session_maker() as session:
        asset = await VideoAssetRepository(session).create(
            title="Launch teaser", raw_asset_ref="a" * 32 + ".mp4"
        )
        return asset.id


class TestMarkProcessing:
    """Tests for the atomic dispatch transition."""

    @pytest.mark.asyncio
    async def test_pending_asset_transitions_once(self, session_maker, asset_id) -> None:
        async with session_maker() as session:
            repo = VideoAssetRepository(session)
            assert await repo.mark_processing(asset_id) is True
            assert await repo.mark_processing(asset_id) is False
            asset = await repo.get(asset_id)
            assert asset.transcoding_status == TranscodingStatus.PROCESSING.value

    @pytest.mark.asyncio
    async def test_transcoded_asset_never_transitions(self, session_maker, asset_id) -> None:
        async with session_maker() as session:
            repo = VideoAssetRepository(session)
            await repo.patch(asset_id, {
                "transcoding_status": TranscodingStatus.COMPLETED.value,
                "is_transcoded": True,
            })
            assert await repo.mark_processing(asset_id) is False
            assert (await repo.get(asset_id)).transcoding_status == TranscodingStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_failed_asset_can_transition_again(self, session_maker, asset_id) -> None:
        async with session_maker() as session:
            repo = VideoAssetRepository(session)
            await repo.patch(asset_id, {"transcoding_status": TranscodingStatus.FAILED.value})
            assert await repo.mark_processing(asset_id) is True

    @pytest.mark.asyncio
    async def test_concurrent_sessions_accept_one(self, session_maker, asset_id) -> None:
        async def attempt() -> bool:
            async with session_maker() as session:
                return await VideoAssetRepository(session).mark_processing(asset_id)

        outcomes = [await attempt() for _ in range(3)]
        assert outcomes == [True, False, False]

    @pytest.mark.asyncio
    async def test_unknown_asset(self, session_maker) -> None:
        async with session_maker() as session:
            assert await VideoAssetRepository(session).mark_processing(uuid.uuid4()) is False


class TestPatch:
    """Tests for partial updates."""

    @pytest.mark.asyncio
    async def test_only_given_fields_change(self, session_maker, asset_id) -> None:
        async with session_maker() as session:
            repo = VideoAssetRepository(session)
            await repo.patch(asset_id, {
                "rendition_map": {"720p": "b" * 32 + ".m3u8", "360p": "c" * 32 + ".m3u8"},
                "original_width": 1280,
                "original_height": 720,
            })

        async with session_maker() as session:
            asset = await VideoAssetRepository(session).get(asset_id)
            assert asset.title == "Launch teaser"
            assert asset.raw_asset_ref == "a" * 32 + ".mp4"
            assert list(asset.rendition_map) == ["720p", "360p"]
            assert asset.original_resolution == {"width": 1280, "height": 720}
            assert asset.transcoding_status == TranscodingStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_clear_raw_asset_ref(self, session_maker, asset_id) -> None:
        async with session_maker() as session:
            repo = VideoAssetRepository(session)
            await repo.patch(asset_id, {"raw_asset_ref": None})
            assert (await repo.get(asset_id)).raw_asset_ref is None

    @pytest.mark.asyncio
    async def test_unknown_asset(self, session_maker) -> None:
        async with session_maker() as session:
            with pytest.raises(AssetNotFoundError):
                await VideoAssetRepository(session).patch(uuid.uuid4(), {"duration": "0:10"})

    @pytest.mark.asyncio
    async def test_unpatchable_field_rejected(self, session_maker, asset_id) -> None:
        async with session_maker() as session:
            with pytest.raises(ValueError):
                await VideoAssetRepository(session).patch(asset_id, {"title": "Renamed"})


class TestPatchIfProcessing:
    """Tests for the conditional terminal write."""

    @pytest.mark.asyncio
    async def test_applies_while_processing(self, session_maker, asset_id) -> None:
        async with session_maker() as session:
            repo = VideoAssetRepository(session)
            await repo.mark_processing(asset_id)
            applied = await repo.patch_if_processing(asset_id, {
                "transcoding_status": TranscodingStatus.COMPLETED.value,
                "is_transcoded": True,
            })
            assert applied is True
            assert (await repo.get(asset_id)).transcoding_status == TranscodingStatus.COMPLETED.value

    @pytest.mark.parametrize("status_value", [
        TranscodingStatus.PENDING.value,
        TranscodingStatus.COMPLETED.value,
        TranscodingStatus.FAILED.value,
    ])
    @pytest.mark.asyncio
    async def test_rejected_in_other_statuses(self, session_maker, asset_id, status_value) -> None:
        async with session_maker() as session:
            repo = VideoAssetRepository(session)
            await repo.patch(asset_id, {"transcoding_status": status_value})
            applied = await repo.patch_if_processing(asset_id, {
                "transcoding_status": TranscodingStatus.FAILED.value,
                "raw_asset_ref": None,
            })
            assert applied is False

        async with session_maker() as session:
            asset = await VideoAssetRepository(session).get(asset_id)
            assert asset.transcoding_status == status_value
            assert asset.raw_asset_ref == "a" * 32 + ".mp4"

    @pytest.mark.asyncio
    async def test_unknown_asset(self, session_maker) -> None:
        async with session_maker() as session:
            with pytest.raises(AssetNotFoundError):
                await VideoAssetRepository(session).patch_if_processing(
                    uuid.uuid4(), {"transcoding_status": TranscodingStatus.FAILED.value}
                )
