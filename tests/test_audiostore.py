import json
from datetime import datetime, timezone

import pytest

from chunkflow.audiostore import AudioStore, ChunkNotFoundError
from chunkflow.model import RawChunk, TransformedChunk, ValidatedChunk

WHEN = datetime(2025, 8, 13, 12, 0, 0, tzinfo=timezone.utc)


def _chunk(chunk_id, user_id, data=b"data", transcript="test transcript"):
    raw = RawChunk(chunk_id=chunk_id, session_id="test-session-id", user_id=user_id, data=data, received=WHEN)
    return TransformedChunk(ValidatedChunk(raw), checksum="test-checksum", transcript=transcript)


@pytest.fixture
def store(tmp_path):
    return AudioStore("metadata.json", data_dir=tmp_path / "Data")


def test_save_and_get_metadata(store):
    store.save_chunk(_chunk("c1", "u1", data=b"hello"))
    meta = store.get_metadata("c1")
    assert meta.chunk_id == "c1"
    assert meta.user_id == "u1"
    assert meta.session_id == "test-session-id"
    assert meta.size == len(b"hello")
    assert meta.checksum == "test-checksum"
    assert meta.timestamp == WHEN


def test_missing_metadata_raises(store):
    with pytest.raises(ChunkNotFoundError, match="audio metadata not found"):
        store.get_metadata("nope")


def test_chunks_by_user_filters(store):
    store.save_chunk(_chunk("a", "u1"))
    store.save_chunk(_chunk("b", "u2"))
    store.save_chunk(_chunk("c", "u1"))
    ids = sorted(meta.chunk_id for meta in store.get_chunks_by_user("u1"))
    assert ids == ["a", "c"]


def test_chunks_by_unknown_user_raises(store):
    store.save_chunk(_chunk("a", "u1"))
    with pytest.raises(ChunkNotFoundError, match="no audio chunks found for user"):
        store.get_chunks_by_user("someone-else")


def test_metadata_written_to_disk(store):
    store.save_chunk(_chunk("b", "u1", data=b"abcd"))
    store.save_chunk(_chunk("a", "u2", transcript=""))
    document = json.loads(store.metadata_path.read_text(encoding="utf-8"))
    assert list(document) == ["a", "b"]
    assert document["b"]["size_bytes"] == 4
    assert document["b"]["timestamp"] == "2025-08-13T12:00:00Z"
    assert "transcript" not in document["a"]


def test_resaving_replaces_metadata(store):
    store.save_chunk(_chunk("a", "u1", data=b"x"))
    store.save_chunk(_chunk("a", "u1", data=b"xyz"))
    assert store.get_metadata("a").size == 3
    assert len(store.get_chunks_by_user("u1")) == 1