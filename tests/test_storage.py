"""Tests for Supabase helpers (mocked client, no network)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError
from storage3.utils import StorageException

from src.ingestion.models import SourceMetadata, TimedTextUnit, VectorRecord
from src.ingestion.storage import (
    SupabaseProcessingLogStore,
    load_cached_transcript,
    load_source_metadata,
    save_cached_transcript,
    transcript_cache_path,
    upsert_source_metadata,
    upsert_vectors,
)
from src.pipeline.errors import DataCorruptedError, FatalError, TransientError


def _record(i: int) -> VectorRecord:
    return VectorRecord(
        id=VectorRecord.make_id("vid", "en", i),
        item_id="vid",
        language="en",
        chunk_index=i,
        content=f"chunk {i}",
        start_time=float(i),
        end_time=float(i + 1),
        embedding=[0.1, 0.2],
    )


class TestVectors:
    def test_upsert_batches_by_id(self) -> None:
        client = MagicMock()
        written = upsert_vectors(client, "transcript_chunks", [_record(i) for i in range(5)], batch_size=2)

        assert written == 5
        client.table.assert_called_with("transcript_chunks")
        upsert = client.table.return_value.upsert
        assert upsert.call_count == 3
        first_rows = upsert.call_args_list[0].args[0]
        assert [r["id"] for r in first_rows] == ["vid:en:0", "vid:en:1"]
        assert upsert.call_args_list[0].kwargs == {"on_conflict": "id"}

    def test_empty_upsert_makes_no_calls(self) -> None:
        client = MagicMock()
        assert upsert_vectors(client, "transcript_chunks", []) == 0
        client.table.return_value.upsert.assert_not_called()

    def test_api_error_is_fatal(self) -> None:
        client = MagicMock()
        client.table.return_value.upsert.return_value.execute.side_effect = APIError(
            {"message": "column missing", "code": "42703", "hint": None, "details": None}
        )
        with pytest.raises(FatalError, match="column missing"):
            upsert_vectors(client, "transcript_chunks", [_record(0)])

    def test_transport_error_is_transient(self) -> None:
        client = MagicMock()
        client.table.return_value.upsert.return_value.execute.side_effect = httpx.ConnectError("refused")
        with pytest.raises(TransientError):
            upsert_vectors(client, "transcript_chunks", [_record(0)])


class TestSourceMetadata:
    def test_upsert_and_load(self) -> None:
        client = MagicMock()
        upsert_source_metadata(client, SourceMetadata(item_id="vid", title="A talk"), table="source_items")
        row = client.table.return_value.upsert.call_args.args[0]
        assert row["item_id"] == "vid"
        assert row["title"] == "A talk"

        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value.data = [{"item_id": "vid", "title": None, "author_name": "Chan"}]
        loaded = load_source_metadata(client, "vid")
        assert loaded == SourceMetadata(item_id="vid", title="", author_name="Chan")

    def test_load_missing(self) -> None:
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value.data = []
        assert load_source_metadata(client, "vid") is None


class TestProcessingLogStore:
    def test_get(self) -> None:
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value.data = [{"item_id": "vid", "status": "pending"}]
        store = SupabaseProcessingLogStore(client, "processing_logs")

        assert store.get("vid") == {"item_id": "vid", "status": "pending"}
        client.table.assert_called_with("processing_logs")
        client.table.return_value.select.return_value.eq.assert_called_with("item_id", "vid")

    def test_update_missing_row(self) -> None:
        client = MagicMock()
        client.table.return_value.update.return_value.eq.return_value.execute.return_value.data = []
        store = SupabaseProcessingLogStore(client)
        assert store.update("vid", {"status": "failed"}) is None

    def test_oldest_with_status_orders_by_creation(self) -> None:
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value
        chain.order.return_value.limit.return_value.execute.return_value.data = [{"item_id": "old"}]
        store = SupabaseProcessingLogStore(client)

        assert store.oldest_with_status("pending") == {"item_id": "old"}
        chain.order.assert_called_with("created_at")


class TestTranscriptCache:
    def _bucket(self, client: MagicMock) -> MagicMock:
        return client.storage.from_.return_value

    def test_path(self) -> None:
        assert transcript_cache_path("vid", "ko") == "raw/vid_ko.json"

    def test_hit(self) -> None:
        client = MagicMock()
        payload = [{"text": "안녕하세요", "start": 1.0, "duration": 2.0}]
        self._bucket(client).download.return_value = json.dumps(payload, ensure_ascii=False).encode("utf-8")

        units = load_cached_transcript(client, "vid", "ko")

        assert units == [TimedTextUnit("안녕하세요", 1.0, 2.0)]
        client.storage.from_.assert_called_with("transcripts")
        self._bucket(client).download.assert_called_with("raw/vid_ko.json")

    def test_miss(self) -> None:
        client = MagicMock()
        self._bucket(client).download.side_effect = StorageException({"statusCode": 404})
        assert load_cached_transcript(client, "vid", "en") is None

    def test_mis_decoded_text_is_corrupted(self) -> None:
        client = MagicMock()
        garbled = "안녕".encode().decode("cp1252")
        payload = [{"text": garbled, "start": 0.0, "duration": 1.0}]
        self._bucket(client).download.return_value = json.dumps(payload).encode("utf-8")
        with pytest.raises(DataCorruptedError):
            load_cached_transcript(client, "vid", "ko")

    def test_invalid_json_is_corrupted(self) -> None:
        client = MagicMock()
        self._bucket(client).download.return_value = b"{not json"
        with pytest.raises(DataCorruptedError):
            load_cached_transcript(client, "vid", "en")

    def test_save_overwrites(self) -> None:
        client = MagicMock()
        path = save_cached_transcript(client, "vid", "en", [TimedTextUnit("hi", 0.0, 1.5)])

        assert path == "raw/vid_en.json"
        args = self._bucket(client).upload.call_args.args
        assert args[0] == "raw/vid_en.json"
        assert json.loads(args[1].decode("utf-8")) == [{"text": "hi", "start": 0.0, "duration": 1.5}]
        assert args[2]["upsert"] == "true"
