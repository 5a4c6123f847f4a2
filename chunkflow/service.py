"""Audio service: the layer between request handlers and the pipeline."""

from __future__ import annotations

from typing import Protocol

from .model import ChunkMeta, RawChunk


class _PipelineRepository(Protocol):
    def ingest(self, raw: RawChunk) -> bool: ...

    def get_chunks_by_user(self, user_id: str) -> list[ChunkMeta]: ...

    def get_metadata(self, chunk_id: str) -> ChunkMeta: ...


class AudioService:
    """Uploads chunks into the pipeline and answers metadata queries."""

    def __init__(self, pipeline: _PipelineRepository) -> None:
        self.pipeline = pipeline

    def upload_audio(self, raw: RawChunk) -> bool:
        """Push a chunk into the pipeline; errors from the pipeline propagate."""
        return self.pipeline.ingest(raw)

    def get_audio_chunks(self, user_id: str) -> list[ChunkMeta]:
        return self.pipeline.get_chunks_by_user(user_id)

    def get_audio_metadata(self, chunk_id: str) -> ChunkMeta:
        return self.pipeline.get_metadata(chunk_id)