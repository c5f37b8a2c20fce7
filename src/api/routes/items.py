"""Processing-log endpoints: register, inspect and requeue items."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from src.api.models import ProcessingLogResponse, RegisterItemRequest
from src.config import get_settings
from src.pipeline.collaborators import build_tracker
from src.pipeline.errors import InvalidTransitionError
from src.pipeline.tracker import ProcessingStatus, StageTracker

router = APIRouter()


def get_tracker() -> StageTracker:
    """Tracker backed by the Supabase ``processing_logs`` table."""
    return build_tracker(get_settings())


@router.post("/api/items", response_model=ProcessingLogResponse, status_code=201)
async def register_item(
    request: RegisterItemRequest,
    tracker: StageTracker = Depends(get_tracker),
) -> ProcessingLogResponse:
    """Queue an item for processing. Registering a known item returns its current log."""
    item_id = request.item_id.strip()
    if not item_id:
        raise HTTPException(status_code=422, detail="item_id must not be blank")
    log = await tracker.register(item_id)
    return ProcessingLogResponse.from_log(log)


@router.get("/api/items", response_model=list[ProcessingLogResponse])
async def list_items(
    status: ProcessingStatus | None = None,
    limit: int = 50,
    tracker: StageTracker = Depends(get_tracker),
) -> list[ProcessingLogResponse]:
    """List processing logs, newest first, optionally filtered by status."""
    if limit < 1 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    logs = await tracker.list_logs(status=status, limit=limit)
    return [ProcessingLogResponse.from_log(log) for log in logs]


@router.get("/api/items/{item_id}", response_model=ProcessingLogResponse)
async def get_item(item_id: str, tracker: StageTracker = Depends(get_tracker)) -> ProcessingLogResponse:
    log = await tracker.get_stage(item_id)
    if log is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return ProcessingLogResponse.from_log(log)


@router.post("/api/items/{item_id}/requeue", response_model=ProcessingLogResponse)
async def requeue_item(item_id: str, tracker: StageTracker = Depends(get_tracker)) -> ProcessingLogResponse:
    """Move a failed item back to pending; completed stages are kept."""
    log = await tracker.get_stage(item_id)
    if log is None:
        raise HTTPException(status_code=404, detail="Item not found")
    try:
        log = await tracker.requeue(item_id)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return ProcessingLogResponse.from_log(log)
