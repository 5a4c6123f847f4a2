"""Chunk records, pipeline configuration and thread-safe metrics counters."""

from __future__ import annotations

import enum
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any


def _format_timestamp(ts: datetime) -> str:
    """Format a datetime as RFC 3339, trimming trailing zeros of the fraction."""
    text = ts.strftime("%Y-%m-%dT%H:%M:%S")
    if ts.microsecond:
        text += "." + f"{ts.microsecond:06d}".rstrip("0")
    offset = ts.utcoffset()
    if offset is None:
        return text
    if offset == timedelta(0):
        return text + "Z"
    seconds = int(offset.total_seconds())
    sign = "+" if seconds >= 0 else "-"
    seconds = abs(seconds)
    return f"{text}{sign}{seconds // 3600:02d}:{seconds % 3600 // 60:02d}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChunkMeta:
    """Metadata kept for every stored audio chunk."""

    chunk_id: str
    session_id: str
    user_id: str
    timestamp: datetime
    size: int
    checksum: str
    transcript: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the metadata; an empty transcript is left out."""
        result: dict[str, Any] = {
            "chunk_id": self.chunk_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "timestamp": _format_timestamp(self.timestamp),
            "size_bytes": self.size,
            "checksum": self.checksum,
        }
        if self.transcript:
            result["transcript"] = self.transcript
        return result


@dataclass
class RawChunk:
    """An audio chunk as it enters the pipeline."""

    chunk_id: str
    session_id: str = ""
    user_id: str = ""
    data: bytes = b""
    received: datetime = field(default_factory=_now)
    # Optional channel on which a caller may wait for the processed metadata.
    ack: queue.Queue[ChunkMeta] | None = field(default=None, compare=False, repr=False)


@dataclass
class ValidatedChunk:
    """A raw chunk that passed validation."""

    raw: RawChunk
    valid: bool = True


@dataclass
class TransformedChunk:
    """A validated chunk with its checksum and mocked features."""

    validated: ValidatedChunk
    checksum: str
    fft: list[float] = field(default_factory=list)
    transcript: str = ""

    @property
    def raw(self) -> RawChunk:
        return self.validated.raw


class BackpressurePolicy(enum.Enum):
    """What a full queue does with a new item."""

    REJECT_NEW = 0
    DROP_OLDEST = 1


@dataclass
class PipelineConfig:
    """Worker counts and queue capacities of each pipeline stage."""

    ingestion_workers: int
    validation_workers: int
    transformation_workers: int
    metadata_workers: int
    storage_workers: int
    ingestion_queue: int
    validation_queue: int
    transformation_queue: int
    metadata_queue: int
    storage_queue: int
    policy: BackpressurePolicy = BackpressurePolicy.REJECT_NEW


class Counter:
    """A monotonically increasing counter safe to share between threads."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def add(self, n: int) -> None:
        with self._lock:
            self._value += n

    def get(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:
        return f"Counter({self.get()})"


@dataclass
class Metrics:
    """The counters reported by the metrics endpoint."""

    ingested: Counter = field(default_factory=Counter)
    validated: Counter = field(default_factory=Counter)
    transformed: Counter = field(default_factory=Counter)
    stored: Counter = field(default_factory=Counter)
    rejected: Counter = field(default_factory=Counter)
    dropped: Counter = field(default_factory=Counter)

    def snapshot(self) -> dict[str, int]:
        """Return the current value of every counter, in reporting order."""
        return {
            "ingested": self.ingested.get(),
            "validated": self.validated.get(),
            "transformed": self.transformed.get(),
            "stored": self.stored.get(),
            "rejected": self.rejected.get(),
            "dropped": self.dropped.get(),
        }