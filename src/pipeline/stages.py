"""Fetch → transcript → vectorize for a single item, resuming after the last finished stage."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TypeVar

from src.ingestion.chunking import TokenCounter, chunk
from src.ingestion.models import SourceMetadata, TimedTextUnit, VectorRecord
from src.pipeline.errors import DataCorruptedError, is_transient
from src.pipeline.retry import Sleep, retry_with_policy
from src.pipeline.tracker import ProcessingLog, StageFlag, StageTracker
from src.pipeline_config import ChunkingBudget, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

_VECTOR_METADATA_FIELDS = ("title", "author_name", "author_url", "thumbnail_url", "provider_name")


def _vector_metadata(metadata: SourceMetadata | None) -> dict[str, str]:
    """Non-empty source fields copied onto every vector of the item."""
    if metadata is None:
        return {}
    values = {name: getattr(metadata, name) for name in _VECTOR_METADATA_FIELDS}
    return {name: value for name, value in values.items() if value}


@dataclass
class Collaborators:
    """Async boundaries the pipeline talks to.

    Every callable raises :class:`src.pipeline.errors.PipelineError` variants
    so the retry executor can classify failures.
    """

    fetch_source_metadata: Callable[[str], Awaitable[SourceMetadata]]
    store_source_metadata: Callable[[SourceMetadata], Awaitable[None]]
    fetch_transcript: Callable[[str, str], Awaitable[list[TimedTextUnit] | None]]
    generate_embedding: Callable[[str], Awaitable[list[float]]]
    upsert_vectors: Callable[[list[VectorRecord]], Awaitable[int]]
    load_source_metadata: Callable[[str], Awaitable[SourceMetadata | None]] | None = None
    load_cached_transcript: Callable[[str, str], Awaitable[list[TimedTextUnit] | None]] | None = None
    save_cached_transcript: Callable[[str, str, list[TimedTextUnit]], Awaitable[object]] | None = None


class ItemOutcome(StrEnum):
    COMPLETED = "completed"
    NO_TRANSCRIPT = "no_transcript"


@dataclass
class ItemStats:
    """What one pass over an item cost; read by the worker even when the pass failed."""

    external_calls: int = 0
    cache_hits: int = 0
    vectors_written: int = 0
    outcome: ItemOutcome | None = None


@dataclass
class _TranscriptSet:
    by_language: dict[str, list[TimedTextUnit]] = field(default_factory=dict)
    refetched: bool = False


class ItemPipeline:
    """Runs the remaining stages of one item against injected collaborators."""

    def __init__(
        self,
        tracker: StageTracker,
        collaborators: Collaborators,
        budget: ChunkingBudget | None = None,
        *,
        languages: Sequence[str] = ("en", "ko"),
        retry_policy: RetryPolicy | None = None,
        token_counter: TokenCounter | None = None,
        sleep: Sleep = asyncio.sleep,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        if not languages:
            raise ValueError("At least one transcript language is required")
        self.tracker = tracker
        self.collaborators = collaborators
        self.budget = budget or ChunkingBudget()
        self.languages = tuple(languages)
        self.retry_policy = retry_policy or RetryPolicy()
        self.token_counter = token_counter
        self._sleep = sleep
        self._stop_event = stop_event

    async def _retry(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        return await retry_with_policy(
            operation,
            self.retry_policy,
            should_retry=is_transient,
            operation_name=name,
            sleep=self._sleep,
            stop_event=self._stop_event,
        )

    async def process(self, log: ProcessingLog, stats: ItemStats | None = None) -> ItemStats:
        """Drive *log*'s item to a terminal state.

        The item must already be marked processing. Stage errors propagate to
        the caller, which records them with ``mark_failed``.
        """
        stats = stats if stats is not None else ItemStats()
        item_id = log.item_id

        metadata: SourceMetadata | None = None
        if not log.source_data_fetched:
            metadata = await self._source_stage(item_id)
            log = await self.tracker.advance_stage(item_id, StageFlag.SOURCE_DATA_FETCHED)

        if log.vector_store_processed:
            # Crashed after the last stage but before completion.
            await self.tracker.mark_completed(item_id)
            stats.outcome = ItemOutcome.COMPLETED
            return stats

        transcripts = await self._transcript_stage(log, stats)
        if not transcripts.by_language:
            await self.tracker.mark_no_transcript(item_id)
            stats.outcome = ItemOutcome.NO_TRANSCRIPT
            return stats
        if not log.transcript_fetched or transcripts.refetched:
            log = await self.tracker.advance_stage(
                item_id, StageFlag.TRANSCRIPT_FETCHED, {"transcript_exists": True}
            )

        if metadata is None and self.collaborators.load_source_metadata is not None:
            metadata = await self._retry(
                lambda: self.collaborators.load_source_metadata(item_id),  # type: ignore[misc]
                f"load_source_metadata({item_id})",
            )
        stats.vectors_written = await self._vector_stage(item_id, transcripts, metadata)
        await self.tracker.advance_stage(item_id, StageFlag.VECTOR_STORE_PROCESSED)
        await self.tracker.mark_completed(item_id)
        stats.outcome = ItemOutcome.COMPLETED
        logger.info("%s completed with %d vectors", item_id, stats.vectors_written)
        return stats

    # -- stages ------------------------------------------------------------

    async def _source_stage(self, item_id: str) -> SourceMetadata:
        metadata = await self._retry(
            lambda: self.collaborators.fetch_source_metadata(item_id),
            f"fetch_source_metadata({item_id})",
        )
        await self._retry(
            lambda: self.collaborators.store_source_metadata(metadata),
            f"store_source_metadata({item_id})",
        )
        return metadata

    async def _read_cache(self, item_id: str, language: str) -> list[TimedTextUnit] | None:
        loader = self.collaborators.load_cached_transcript
        if loader is None:
            return None
        return await self._retry(lambda: loader(item_id, language), f"load_cached_transcript({item_id}, {language})")

    async def _fetch(self, item_id: str, language: str, stats: ItemStats) -> list[TimedTextUnit] | None:
        async def attempt() -> list[TimedTextUnit] | None:
            stats.external_calls += 1
            return await self.collaborators.fetch_transcript(item_id, language)

        units = await self._retry(attempt, f"fetch_transcript({item_id}, {language})")
        if units and self.collaborators.save_cached_transcript is not None:
            saver = self.collaborators.save_cached_transcript
            await self._retry(lambda: saver(item_id, language, units), f"save_cached_transcript({item_id}, {language})")
        return units

    async def _transcript_stage(self, log: ProcessingLog, stats: ItemStats) -> _TranscriptSet:
        """Collect transcripts, preferring the cache over the quota-limited API.

        Once ``transcript_fetched`` is set only the cache is consulted, unless
        the cache turns out to be corrupted or gone; then the flag is cleared
        and the missing languages are fetched again.
        """
        item_id = log.item_id
        result = _TranscriptSet()
        to_fetch: list[str] = []
        corrupted = False

        for language in self.languages:
            try:
                units = await self._read_cache(item_id, language)
            except DataCorruptedError as exc:
                logger.warning("%s (%s): %s", item_id, language, exc)
                corrupted = True
                units = None
            if units:
                stats.cache_hits += 1
                result.by_language[language] = units
            else:
                to_fetch.append(language)

        if log.transcript_fetched:
            if not corrupted and result.by_language:
                return result
            await self.tracker.invalidate_transcript_cache(item_id)
            result.refetched = True

        for language in to_fetch:
            units = await self._fetch(item_id, language, stats)
            if units:
                result.by_language[language] = units
        return result

    async def _vector_stage(
        self,
        item_id: str,
        transcripts: _TranscriptSet,
        metadata: SourceMetadata | None,
    ) -> int:
        records: list[VectorRecord] = []
        for language, units in transcripts.by_language.items():
            chunks = chunk(units, self.budget, token_counter=self.token_counter)
            logger.info("%s (%s): %d units -> %d chunks", item_id, language, len(units), len(chunks))
            for index, piece in enumerate(chunks):
                embedding = await self._retry(
                    lambda text=piece.text: self.collaborators.generate_embedding(text),
                    f"generate_embedding({item_id}, {language}, {index})",
                )
                records.append(
                    VectorRecord(
                        id=VectorRecord.make_id(item_id, language, index),
                        item_id=item_id,
                        language=language,
                        chunk_index=index,
                        content=piece.text,
                        start_time=piece.start_time_sec,
                        end_time=piece.end_time_sec,
                        embedding=embedding,
                        metadata=_vector_metadata(metadata),
                    )
                )

        if not records:
            return 0
        return await self._retry(
            lambda: self.collaborators.upsert_vectors(records),
            f"upsert_vectors({item_id})",
        )
