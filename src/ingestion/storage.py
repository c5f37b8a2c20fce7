"""Supabase storage helpers: processing logs, source metadata, vectors and the transcript cache."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict
from typing import Any

import httpx
from postgrest.exceptions import APIError
from storage3.utils import StorageException
from supabase import Client, create_client

from src.ingestion.models import SourceMetadata, TimedTextUnit, VectorRecord
from src.ingestion.parsers import has_mis_decoded_text, units_from_segments
from src.pipeline.errors import DataCorruptedError, FatalError, TransientError

logger = logging.getLogger(__name__)


def get_supabase_client(url: str | None = None, key: str | None = None) -> Client:
    """Create and return a Supabase client, defaulting to environment variables."""
    return create_client(
        url or os.getenv("SUPABASE_URL", ""),
        key or os.getenv("SUPABASE_KEY", ""),
    )


def _execute(query: Any) -> Any:
    """Run a PostgREST query, translating failures into pipeline errors."""
    try:
        return query.execute()
    except httpx.TransportError as exc:
        raise TransientError(f"Supabase unreachable: {exc}") from exc
    except APIError as exc:
        raise FatalError(f"Supabase rejected the request: {exc.message}") from exc


class SupabaseProcessingLogStore:
    """``processing_logs`` table access for :class:`src.pipeline.tracker.StageTracker`."""

    def __init__(self, client: Client, table: str = "processing_logs") -> None:
        self._client = client
        self._table = table

    def get(self, item_id: str) -> dict[str, Any] | None:
        result = _execute(self._client.table(self._table).select("*").eq("item_id", item_id).limit(1))
        return result.data[0] if result.data else None

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        result = _execute(self._client.table(self._table).insert(row))
        return result.data[0]

    def update(self, item_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        result = _execute(self._client.table(self._table).update(changes).eq("item_id", item_id))
        return result.data[0] if result.data else None

    def oldest_with_status(self, status: str) -> dict[str, Any] | None:
        result = _execute(
            self._client.table(self._table)
            .select("*")
            .eq("status", status)
            .order("created_at")
            .limit(1)
        )
        return result.data[0] if result.data else None

    def list(self, status: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        query = self._client.table(self._table).select("*")
        if status is not None:
            query = query.eq("status", status)
        result = _execute(query.order("created_at", desc=True).limit(limit))
        return list(result.data or [])


def upsert_source_metadata(client: Client, metadata: SourceMetadata, table: str = "source_items") -> None:
    """Insert or refresh the descriptive row for an item."""
    _execute(client.table(table).upsert(asdict(metadata), on_conflict="item_id"))


def load_source_metadata(client: Client, item_id: str, table: str = "source_items") -> SourceMetadata | None:
    result = _execute(client.table(table).select("*").eq("item_id", item_id).limit(1))
    if not result.data:
        return None
    row = result.data[0]
    return SourceMetadata(
        item_id=row["item_id"],
        title=row.get("title") or "",
        author_name=row.get("author_name"),
        author_url=row.get("author_url"),
        thumbnail_url=row.get("thumbnail_url"),
        provider_name=row.get("provider_name"),
    )


def upsert_vectors(
    client: Client,
    index_name: str,
    vectors: list[VectorRecord],
    batch_size: int = 100,
) -> int:
    """Upsert vector records into *index_name* in batches.

    Record ids are deterministic, so re-running the vector stage overwrites
    rows instead of duplicating them.

    Returns:
        Number of records written.
    """
    rows: list[dict[str, object]] = []
    for record in vectors:
        rows.append(
            {
                "id": record.id,
                "item_id": record.item_id,
                "language": record.language,
                "chunk_index": record.chunk_index,
                "content": record.content,
                "start_time": record.start_time,
                "end_time": record.end_time,
                "embedding": record.embedding,
                "metadata": record.metadata,
            }
        )

    for i in range(0, len(rows), batch_size):
        _execute(client.table(index_name).upsert(rows[i : i + batch_size], on_conflict="id"))
    logger.info("Upserted %d vectors into %s", len(rows), index_name)
    return len(rows)


def transcript_cache_path(item_id: str, language: str, folder: str = "raw") -> str:
    return f"{folder}/{item_id}_{language}.json"


def load_cached_transcript(
    client: Client,
    item_id: str,
    language: str,
    bucket: str = "transcripts",
    folder: str = "raw",
) -> list[TimedTextUnit] | None:
    """Read a cached transcript from Supabase Storage.

    Returns:
        The cached units, or None on a cache miss.

    Raises:
        DataCorruptedError: The cached file exists but cannot be trusted.
    """
    path = transcript_cache_path(item_id, language, folder)
    try:
        payload = client.storage.from_(bucket).download(path)
    except StorageException as exc:
        logger.info("Transcript cache miss for %s (%s): %s", item_id, language, exc)
        return None
    except httpx.TransportError as exc:
        raise TransientError(f"Transcript cache unreachable: {exc}") from exc

    try:
        segments = json.loads(payload.decode("utf-8"))
        units = units_from_segments(segments)
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError, ValueError, KeyError) as exc:
        raise DataCorruptedError(f"Unreadable cached transcript {path}: {exc}") from exc

    if not units:
        return None
    if has_mis_decoded_text(units):
        raise DataCorruptedError(f"Cached transcript {path} contains mis-decoded text")
    return units


def save_cached_transcript(
    client: Client,
    item_id: str,
    language: str,
    units: list[TimedTextUnit],
    bucket: str = "transcripts",
    folder: str = "raw",
) -> str:
    """Write *units* to the transcript cache, replacing any previous copy."""
    path = transcript_cache_path(item_id, language, folder)
    body = json.dumps([u.to_dict() for u in units], ensure_ascii=False).encode("utf-8")
    try:
        client.storage.from_(bucket).upload(
            path,
            body,
            {"content-type": "application/json; charset=utf-8", "upsert": "true"},
        )
    except httpx.TransportError as exc:
        raise TransientError(f"Transcript cache unreachable: {exc}") from exc
    except StorageException as exc:
        raise FatalError(f"Could not cache transcript {path}: {exc}") from exc
    logger.info("Cached %d transcript units at %s/%s", len(units), bucket, path)
    return path
