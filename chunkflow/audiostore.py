"""In-memory store of audio chunks and their metadata, mirrored to a JSON file."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from .model import ChunkMeta, TransformedChunk

log = logging.getLogger(__name__)


class ChunkNotFoundError(LookupError):
    """Raised when no stored metadata matches a query."""


class AudioStore:
    """Holds chunk bytes and metadata; writes the metadata to disk on every save."""

    def __init__(self, metadata_file: str = "metadata.json", data_dir: str | Path = "Data") -> None:
        self._lock = threading.Lock()
        self._chunks: dict[str, bytes] = {}
        self._metadata: dict[str, ChunkMeta] = {}
        self.metadata_file = metadata_file
        self.data_dir = Path(data_dir)

    @property
    def metadata_path(self) -> Path:
        return self.data_dir / self.metadata_file

    def save_chunk(self, chunk: TransformedChunk) -> None:
        """Store a processed chunk and persist the metadata file."""
        raw = chunk.raw
        meta = ChunkMeta(
            chunk_id=raw.chunk_id,
            session_id=raw.session_id,
            user_id=raw.user_id,
            timestamp=raw.received,
            size=len(raw.data),
            checksum=chunk.checksum,
            transcript=chunk.transcript,
        )
        with self._lock:
            self._chunks[raw.chunk_id] = raw.data
            self._metadata[raw.chunk_id] = meta
        self.save_metadata_to_disk()

    def get_metadata(self, chunk_id: str) -> ChunkMeta:
        with self._lock:
            try:
                return self._metadata[chunk_id]
            except KeyError:
                raise ChunkNotFoundError("audio metadata not found") from None

    def get_chunks_by_user(self, user_id: str) -> list[ChunkMeta]:
        with self._lock:
            found = [meta for meta in self._metadata.values() if meta.user_id == user_id]
        if not found:
            raise ChunkNotFoundError("no audio chunks found for user")
        return found

    def save_metadata_to_disk(self) -> None:
        """Write all metadata as indented JSON keyed by chunk id; failures are logged."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log.error("Error creating directory: %s", exc)
            return
        with self._lock:
            document = {key: self._metadata[key].to_dict() for key in sorted(self._metadata)}
        try:
            self.metadata_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        except OSError as exc:
            log.error("Error writing metadata file: %s", exc)