"""Wire the real Supabase/YouTube/OpenAI collaborators into the pipeline."""

from __future__ import annotations

import asyncio
import random
from dataclasses import replace

from openai import OpenAI
from supabase import Client

from src.config import Settings
from src.ingestion import embeddings, storage, youtube
from src.ingestion.chunking import make_token_counter
from src.ingestion.models import SourceMetadata, TimedTextUnit, VectorRecord
from src.pipeline.rate_limiter import RateLimiter
from src.pipeline.stages import Collaborators
from src.pipeline.tracker import StageTracker
from src.pipeline.worker import ProcessingWorker
from src.pipeline_config import ChunkingBudget, RateLimiterConfig, RetryPolicy, WorkerConfig


def build_tracker(settings: Settings, client: Client | None = None) -> StageTracker:
    client = client or storage.get_supabase_client(settings.supabase_url, settings.supabase_key)
    return StageTracker(storage.SupabaseProcessingLogStore(client, settings.processing_log_table))


def build_default_collaborators(
    settings: Settings,
    client: Client | None = None,
    openai_client: OpenAI | None = None,
) -> Collaborators:
    """Async adapters over the blocking SDK helpers; each call runs in a thread."""
    client = client or storage.get_supabase_client(settings.supabase_url, settings.supabase_key)
    openai_client = openai_client or OpenAI(api_key=settings.openai_api_key or None)

    async def fetch_source_metadata(item_id: str) -> SourceMetadata:
        return await asyncio.to_thread(youtube.fetch_source_metadata, item_id)

    async def store_source_metadata(metadata: SourceMetadata) -> None:
        await asyncio.to_thread(storage.upsert_source_metadata, client, metadata, settings.source_table)

    async def load_source_metadata(item_id: str) -> SourceMetadata | None:
        return await asyncio.to_thread(storage.load_source_metadata, client, item_id, settings.source_table)

    async def fetch_transcript(item_id: str, language: str) -> list[TimedTextUnit] | None:
        return await asyncio.to_thread(youtube.fetch_transcript, item_id, language)

    async def generate_embedding(text: str) -> list[float]:
        return await asyncio.to_thread(
            embeddings.generate_embedding, text, settings.embedding_model, openai_client
        )

    async def upsert_vectors(vectors: list[VectorRecord]) -> int:
        return await asyncio.to_thread(
            storage.upsert_vectors, client, settings.vector_table, vectors, settings.vector_upsert_batch_size
        )

    async def load_cached_transcript(item_id: str, language: str) -> list[TimedTextUnit] | None:
        return await asyncio.to_thread(
            storage.load_cached_transcript,
            client,
            item_id,
            language,
            settings.transcript_bucket,
            settings.transcript_cache_folder,
        )

    async def save_cached_transcript(item_id: str, language: str, units: list[TimedTextUnit]) -> str:
        return await asyncio.to_thread(
            storage.save_cached_transcript,
            client,
            item_id,
            language,
            units,
            settings.transcript_bucket,
            settings.transcript_cache_folder,
        )

    return Collaborators(
        fetch_source_metadata=fetch_source_metadata,
        store_source_metadata=store_source_metadata,
        fetch_transcript=fetch_transcript,
        generate_embedding=generate_embedding,
        upsert_vectors=upsert_vectors,
        load_source_metadata=load_source_metadata,
        load_cached_transcript=load_cached_transcript,
        save_cached_transcript=save_cached_transcript,
    )


def build_worker(settings: Settings, seed: int | None = None) -> ProcessingWorker:
    """Assemble a production worker from configuration."""
    client = storage.get_supabase_client(settings.supabase_url, settings.supabase_key)
    token_counter = make_token_counter(settings.chunk_token_encoding) if settings.chunk_use_tokens else None
    budget = ChunkingBudget.from_settings(settings)
    if token_counter is not None:
        # Unset token budgets fall back to the chunker's token defaults.
        budget = replace(budget, max_tokens=900)
    return ProcessingWorker(
        build_tracker(settings, client),
        build_default_collaborators(settings, client),
        budget=budget,
        languages=settings.transcript_languages,
        retry_policy=RetryPolicy.from_settings(settings),
        rate_limiter=RateLimiter(RateLimiterConfig.from_settings(settings), rng=random.Random(seed)),
        config=WorkerConfig.from_settings(settings),
        token_counter=token_counter,
    )
