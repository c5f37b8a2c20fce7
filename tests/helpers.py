"""Test doubles shared across the suite: a ticking clock, unit builders and fake collaborators."""

from __future__ import annotations

import itertools
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from src.ingestion.models import SourceMetadata, TimedTextUnit, VectorRecord
from src.pipeline.stages import Collaborators
from src.pipeline_config import RetryPolicy, WorkerConfig


def ticking_clock(start: datetime | None = None) -> Callable[[], datetime]:
    """A clock that advances one second per call so created_at ordering is stable."""
    base = start or datetime(2024, 1, 1, tzinfo=UTC)
    ticks = itertools.count()
    return lambda: base + timedelta(seconds=next(ticks))


def make_units(count: int, text_len: int = 70, step: float = 7.0, duration: float = 6.0) -> list[TimedTextUnit]:
    """Distinct caption-like units with a 1s silence between them."""
    units = []
    for i in range(count):
        text = (f"Caption {i:03d} " + "lorem ipsum " * 20)[:text_len].strip()
        units.append(TimedTextUnit(text=text, start_sec=i * step, duration_sec=duration))
    return units


@dataclass
class FakeServices:
    """Collaborators backed by dicts; records every call.

    ``errors[name]`` is a queue of exceptions raised (one per call) before the
    operation starts succeeding.
    """

    transcripts: dict[str, dict[str, list[TimedTextUnit]]] = field(default_factory=dict)
    cache: dict[tuple[str, str], list[TimedTextUnit] | Exception] = field(default_factory=dict)
    metadata: dict[str, SourceMetadata] = field(default_factory=dict)
    errors: dict[str, list[Exception]] = field(default_factory=dict)
    calls: Counter = field(default_factory=Counter)
    upserted: list[VectorRecord] = field(default_factory=list)

    def _enter(self, name: str) -> None:
        self.calls[name] += 1
        queued = self.errors.get(name)
        if queued:
            raise queued.pop(0)

    async def fetch_source_metadata(self, item_id: str) -> SourceMetadata:
        self._enter("fetch_source_metadata")
        return SourceMetadata(
            item_id=item_id,
            title=f"Title {item_id}",
            author_name="Channel",
            thumbnail_url=f"https://i.ytimg.com/vi/{item_id}/hqdefault.jpg",
        )

    async def store_source_metadata(self, metadata: SourceMetadata) -> None:
        self._enter("store_source_metadata")
        self.metadata[metadata.item_id] = metadata

    async def load_source_metadata(self, item_id: str) -> SourceMetadata | None:
        self._enter("load_source_metadata")
        return self.metadata.get(item_id)

    async def fetch_transcript(self, item_id: str, language: str) -> list[TimedTextUnit] | None:
        self._enter("fetch_transcript")
        return self.transcripts.get(item_id, {}).get(language)

    async def generate_embedding(self, text: str) -> list[float]:
        self._enter("generate_embedding")
        return [float(len(text)), 1.0]

    async def upsert_vectors(self, vectors: list[VectorRecord]) -> int:
        self._enter("upsert_vectors")
        self.upserted.extend(vectors)
        return len(vectors)

    async def load_cached_transcript(self, item_id: str, language: str) -> list[TimedTextUnit] | None:
        self._enter("load_cached_transcript")
        cached = self.cache.get((item_id, language))
        if isinstance(cached, Exception):
            raise cached
        return cached

    async def save_cached_transcript(self, item_id: str, language: str, units: list[TimedTextUnit]) -> None:
        self._enter("save_cached_transcript")
        self.cache[(item_id, language)] = list(units)

    def collaborators(self) -> Collaborators:
        return Collaborators(
            fetch_source_metadata=self.fetch_source_metadata,
            store_source_metadata=self.store_source_metadata,
            fetch_transcript=self.fetch_transcript,
            generate_embedding=self.generate_embedding,
            upsert_vectors=self.upsert_vectors,
            load_source_metadata=self.load_source_metadata,
            load_cached_transcript=self.load_cached_transcript,
            save_cached_transcript=self.save_cached_transcript,
        )



FAST_RETRY = RetryPolicy(max_retries=2, base_delay=1.0, max_delay=4.0)
WORKER_CONFIG = WorkerConfig(idle_poll_interval_sec=600.0, cache_hit_delay_sec=5.0, error_backoff_sec=30.0)
