"""Pydantic request/response schemas for the pipeline admin API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.pipeline.tracker import ProcessingLog, ProcessingStatus


class RegisterItemRequest(BaseModel):
    """Request body for POST /api/items."""

    item_id: str = Field(min_length=1)


class ProcessingLogResponse(BaseModel):
    """Processing state of a single item."""

    item_id: str
    status: ProcessingStatus
    source_data_fetched: bool
    transcript_fetched: bool
    transcript_exists: bool | None = None
    vector_store_processed: bool
    retry_count: int = 0
    last_error: str | None = None
    created_at: str | None = None
    last_processed_at: str | None = None
    processing_started_at: str | None = None

    @classmethod
    def from_log(cls, log: ProcessingLog) -> ProcessingLogResponse:
        return cls(**log.to_row())
