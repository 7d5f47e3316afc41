"""Shared fixtures for the backend test suite."""

import pytest

from transcoding_fakes import EventLog, InMemoryCatalog, RecordingStorage


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def catalog(events: EventLog) -> InMemoryCatalog:
    return InMemoryCatalog(events)


@pytest.fixture
def storage(tmp_path, events: EventLog) -> RecordingStorage:
    return RecordingStorage(str(tmp_path / "objects"), events)


@pytest.fixture
def workspace(tmp_path) -> str:
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


@pytest.fixture
def raw_source(storage: RecordingStorage) -> str:
    """Storage ID of an uploaded source video."""
    result = storage.put(b"\x00\x00\x00\x18ftypmp42 raw upload", "video/mp4")
    assert result.success
    return result.key
