"""Data models for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TimedTextUnit:
    """One timestamped piece of source text before chunking."""

    text: str
    start_sec: float
    duration_sec: float

    @property
    def end_sec(self) -> float:
        return self.start_sec + self.duration_sec

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "start": self.start_sec, "duration": self.duration_sec}


@dataclass(frozen=True)
class Chunk:
    """A bounded span of concatenated units, ready for embedding."""

    text: str
    start_time_sec: float
    end_time_sec: float

    @property
    def duration_sec(self) -> float:
        return self.end_time_sec - self.start_time_sec


@dataclass
class SourceMetadata:
    """Descriptive metadata for a content item (YouTube oEmbed payload)."""

    item_id: str
    title: str = ""
    author_name: str | None = None
    author_url: str | None = None
    thumbnail_url: str | None = None
    provider_name: str | None = None


@dataclass
class VectorRecord:
    """A chunk embedding ready for upsert into the vector table."""

    id: str
    item_id: str
    language: str
    chunk_index: int
    content: str
    start_time: float
    end_time: float
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def make_id(item_id: str, language: str, chunk_index: int) -> str:
        """Deterministic id so re-running a stage overwrites instead of duplicating."""
        return f"{item_id}:{language}:{chunk_index}"
