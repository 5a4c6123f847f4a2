"""A staged, thread-backed processing pipeline for audio chunks with backpressure."""

from __future__ import annotations

import hashlib
import logging
import os
import random
import threading
import time
from queue import Empty, Full, Queue
from typing import Callable, TypeVar

from .audiostore import AudioStore
from .model import (
    BackpressurePolicy,
    ChunkMeta,
    Metrics,
    PipelineConfig,
    RawChunk,
    TransformedChunk,
    ValidatedChunk,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

_POLL_INTERVAL = 0.05
_FFT_SIZE = 16


class IngestRejectedError(RuntimeError):
    """Raised when the ingestion queue refuses a chunk."""


def try_send(
    queue: Queue[T],
    item: T,
    policy: BackpressurePolicy,
    name: str,
    metrics: Metrics,
) -> bool:
    """Put item on the queue without blocking, applying the backpressure policy when full."""
    while True:
        try:
            queue.put_nowait(item)
            return True
        except Full:
            pass
        if policy is BackpressurePolicy.REJECT_NEW:
            metrics.rejected.add(1)
            log.info("[%s] queue full -> reject new", name)
            return False
        try:
            queue.get_nowait()
        except Empty:
            continue  # room appeared meanwhile; retry
        metrics.dropped.add(1)
        log.info("[%s] queue full -> drop oldest", name)


def default_config() -> PipelineConfig:
    """Return worker counts scaled to the CPU count and the standard queue sizes."""
    cpus = os.cpu_count() or 1
    return PipelineConfig(
        ingestion_workers=max(2, cpus // 2),
        validation_workers=max(2, cpus // 2),
        transformation_workers=max(2, cpus),
        metadata_workers=2,
        storage_workers=2,
        ingestion_queue=128,
        validation_queue=128,
        transformation_queue=64,
        metadata_queue=64,
        storage_queue=64,
        policy=BackpressurePolicy.DROP_OLDEST,
    )


class Pipeline:
    """Validation, transformation, metadata and storage stages joined by bounded queues."""

    def __init__(
        self,
        config: PipelineConfig,
        store: AudioStore,
        metrics: Metrics | None = None,
        transform_delay: float = 0.01,
    ) -> None:
        sizes = {
            "ingestion_queue": config.ingestion_queue,
            "validation_queue": config.validation_queue,
            "transformation_queue": config.transformation_queue,
            "metadata_queue": config.metadata_queue,
            "storage_queue": config.storage_queue,
        }
        for name, size in sizes.items():
            if size < 1:
                raise ValueError(f"{name} must be at least 1, got {size}")
        self.config = config
        self.store = store
        self.metrics = metrics if metrics is not None else Metrics()
        self.transform_delay = transform_delay
        self._ingest_q: Queue[RawChunk] = Queue(config.ingestion_queue)
        self._validate_q: Queue[ValidatedChunk] = Queue(config.validation_queue)
        self._transform_q: Queue[TransformedChunk] = Queue(config.transformation_queue)
        self._metadata_q: Queue[TransformedChunk] = Queue(config.metadata_queue)
        self._storage_q: Queue[TransformedChunk] = Queue(config.storage_queue)
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._rng = random.Random()

    def __enter__(self) -> Pipeline:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def start(self) -> None:
        """Start every stage's worker threads."""
        if self._threads:
            raise RuntimeError("pipeline already started")
        self._stop.clear()
        stages: list[tuple[str, int, Queue, Callable]] = [
            ("validate", self.config.validation_workers, self._ingest_q, self._validate),
            ("transform", self.config.transformation_workers, self._validate_q, self._transform),
            ("metadata", self.config.metadata_workers, self._transform_q, self._enrich),
            ("storage", self.config.storage_workers, self._metadata_q, self._persist),
        ]
        for name, count, source, step in stages:
            for index in range(count):
                thread = threading.Thread(
                    target=self._worker,
                    args=(source, step),
                    name=f"{name}-{index}",
                    daemon=True,
                )
                self._threads.append(thread)
                thread.start()

    def stop(self) -> None:
        """Signal the workers to finish and wait for them."""
        self._stop.set()
        for thread in self._threads:
            thread.join()
        self._threads = []

    def _worker(self, source: Queue, step: Callable) -> None:
        while not self._stop.is_set():
            try:
                item = source.get(timeout=_POLL_INTERVAL)
            except Empty:
                continue
            try:
                step(item)
            except Exception:
                log.exception("[PANIC] in pipeline workers")

    def _send(self, target: Queue, item: object, name: str) -> bool:
        if self._stop.is_set():
            return False
        return try_send(target, item, self.config.policy, name, self.metrics)

    def _validate(self, raw: RawChunk) -> None:
        if not raw.data:
            return
        self.metrics.validated.add(1)
        self._send(self._validate_q, ValidatedChunk(raw, valid=True), "validate")

    def _transform(self, validated: ValidatedChunk) -> None:
        data = validated.raw.data
        transformed = TransformedChunk(
            validated,
            checksum=hashlib.sha256(data).hexdigest(),
            fft=[self._rng.random() for _ in range(_FFT_SIZE)],
            transcript=f"fake transcript ({len(data)} bytes)",
        )
        if self.transform_delay > 0:
            time.sleep(self.transform_delay)
        self.metrics.transformed.add(1)
        self._send(self._transform_q, transformed, "transform")

    def _enrich(self, transformed: TransformedChunk) -> None:
        self._send(self._metadata_q, transformed, "metadata")

    def _persist(self, transformed: TransformedChunk) -> None:
        self.store.save_chunk(transformed)
        self.metrics.stored.add(1)

    def ingest(self, raw: RawChunk) -> bool:
        """Queue a raw chunk for processing; raise IngestRejectedError if it is refused."""
        self.metrics.ingested.add(1)
        if not try_send(self._ingest_q, raw, self.config.policy, "ingest", self.metrics):
            raise IngestRejectedError("audio ingest failed")
        return True

    def get_chunks_by_user(self, user_id: str) -> list[ChunkMeta]:
        return self.store.get_chunks_by_user(user_id)

    def get_metadata(self, chunk_id: str) -> ChunkMeta:
        return self.store.get_metadata(chunk_id)