"""Persisted per-item stage tracking.

One ``processing_logs`` row per content item records which pipeline stages are
durably complete, so an interrupted or failed item resumes after its last
finished stage instead of starting over.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, fields
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

from src.pipeline.errors import InvalidTransitionError, ProcessingLogNotFoundError

logger = logging.getLogger(__name__)


class ProcessingStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StageFlag(StrEnum):
    """Pipeline stages in the order they must complete."""

    SOURCE_DATA_FETCHED = "source_data_fetched"
    TRANSCRIPT_FETCHED = "transcript_fetched"
    VECTOR_STORE_PROCESSED = "vector_store_processed"


STAGE_ORDER: tuple[StageFlag, ...] = (
    StageFlag.SOURCE_DATA_FETCHED,
    StageFlag.TRANSCRIPT_FETCHED,
    StageFlag.VECTOR_STORE_PROCESSED,
)

ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.PROCESSING, ProcessingStatus.COMPLETED}),
    ProcessingStatus.PROCESSING: frozenset(
        {ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.PENDING}
    ),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.PENDING}),
    ProcessingStatus.COMPLETED: frozenset(),
}

# Extra columns advance_stage() may set alongside a stage flag.
_ADVANCE_EXTRAS = frozenset({"transcript_exists"})


@dataclass
class ProcessingLog:
    """One row of the ``processing_logs`` table."""

    item_id: str
    source_data_fetched: bool = False
    transcript_fetched: bool = False
    transcript_exists: bool | None = None
    vector_store_processed: bool = False
    status: ProcessingStatus = ProcessingStatus.PENDING
    retry_count: int = 0
    last_error: str | None = None
    created_at: str | None = None
    last_processed_at: str | None = None
    processing_started_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ProcessingLog:
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in row.items() if k in known}
        data["status"] = ProcessingStatus(data.get("status") or ProcessingStatus.PENDING)
        for flag in STAGE_ORDER:
            data[flag.value] = bool(data.get(flag.value))
        data["retry_count"] = int(data.get("retry_count") or 0)
        return cls(**data)

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["status"] = self.status.value
        return row

    def is_done(self, flag: StageFlag) -> bool:
        return bool(getattr(self, flag.value))

    @property
    def remaining_stages(self) -> list[StageFlag]:
        return [flag for flag in STAGE_ORDER if not self.is_done(flag)]


class ProcessingLogStore(Protocol):
    """Backing store contract: read-by-oldest-pending and update-by-id."""

    def get(self, item_id: str) -> dict[str, Any] | None: ...

    def insert(self, row: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, item_id: str, changes: dict[str, Any]) -> dict[str, Any] | None: ...

    def oldest_with_status(self, status: str) -> dict[str, Any] | None: ...

    def list(self, status: str | None = None, limit: int = 50) -> list[dict[str, Any]]: ...


class InMemoryProcessingLogStore:
    """Process-local store used for local runs and tests."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, item_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._rows.get(item_id)
            return dict(row) if row is not None else None

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            if row["item_id"] in self._rows:
                raise ValueError(f"Duplicate processing log for {row['item_id']!r}")
            self._rows[row["item_id"]] = dict(row)
            return dict(row)

    def update(self, item_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            row = self._rows.get(item_id)
            if row is None:
                return None
            row.update(changes)
            return dict(row)

    def oldest_with_status(self, status: str) -> dict[str, Any] | None:
        with self._lock:
            matching = [r for r in self._rows.values() if r.get("status") == status]
            if not matching:
                return None
            # Insertion order breaks created_at ties.
            return dict(min(matching, key=lambda r: r.get("created_at") or ""))

    def list(self, status: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(r) for r in self._rows.values() if status is None or r.get("status") == status]
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return rows[:limit]


def utc_now() -> datetime:
    return datetime.now(UTC)


class StageTracker:
    """State machine over :class:`ProcessingLog` rows.

    Stage flags only ever move from false to true; the single exception is
    :meth:`invalidate_transcript_cache`. Store calls are blocking and run in a
    worker thread so the event loop keeps pacing.
    """

    def __init__(self, store: ProcessingLogStore, now: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._now = now

    def _timestamp(self) -> str:
        return self._now().isoformat()

    async def _get(self, item_id: str) -> ProcessingLog:
        row = await asyncio.to_thread(self._store.get, item_id)
        if row is None:
            raise ProcessingLogNotFoundError(item_id)
        return ProcessingLog.from_row(row)

    async def _update(self, item_id: str, changes: dict[str, Any]) -> ProcessingLog:
        row = await asyncio.to_thread(self._store.update, item_id, changes)
        if row is None:
            raise ProcessingLogNotFoundError(item_id)
        return ProcessingLog.from_row(row)

    async def _transition(
        self, item_id: str, target: ProcessingStatus, changes: dict[str, Any] | None = None
    ) -> ProcessingLog:
        log = await self._get(item_id)
        if target != log.status and target not in ALLOWED_TRANSITIONS[log.status]:
            raise InvalidTransitionError(
                f"{item_id}: cannot move from {log.status.value} to {target.value}"
            )
        return await self._update(item_id, {"status": target.value, **(changes or {})})

    # -- reads -------------------------------------------------------------

    async def get_stage(self, item_id: str) -> ProcessingLog | None:
        row = await asyncio.to_thread(self._store.get, item_id)
        return ProcessingLog.from_row(row) if row is not None else None

    async def next_pending(self) -> ProcessingLog | None:
        """Oldest pending item, or None when the queue is empty."""
        row = await asyncio.to_thread(self._store.oldest_with_status, ProcessingStatus.PENDING.value)
        return ProcessingLog.from_row(row) if row is not None else None

    async def list_logs(self, status: ProcessingStatus | None = None, limit: int = 50) -> list[ProcessingLog]:
        rows = await asyncio.to_thread(self._store.list, status.value if status else None, limit)
        return [ProcessingLog.from_row(r) for r in rows]

    # -- lifecycle ---------------------------------------------------------

    async def register(self, item_id: str) -> ProcessingLog:
        """Create a pending log on first sight; return the existing one otherwise."""
        if not item_id or not item_id.strip():
            raise ValueError("item_id is required")
        existing = await self.get_stage(item_id)
        if existing is not None:
            return existing
        log = ProcessingLog(item_id=item_id, created_at=self._timestamp())
        row = await asyncio.to_thread(self._store.insert, log.to_row())
        logger.info("Registered %s for processing", item_id)
        return ProcessingLog.from_row(row)

    async def mark_processing(self, item_id: str) -> ProcessingLog:
        return await self._transition(
            item_id, ProcessingStatus.PROCESSING, {"processing_started_at": self._timestamp()}
        )

    async def mark_completed(self, item_id: str) -> ProcessingLog:
        return await self._transition(
            item_id,
            ProcessingStatus.COMPLETED,
            {"last_processed_at": self._timestamp(), "last_error": None},
        )

    async def mark_no_transcript(self, item_id: str) -> ProcessingLog:
        """Record "no transcript exists" as a final, successful outcome."""
        logger.info("%s has no transcript; completing without vectorization", item_id)
        return await self._transition(
            item_id,
            ProcessingStatus.COMPLETED,
            {"transcript_exists": False, "last_processed_at": self._timestamp()},
        )

    async def mark_failed(self, item_id: str, error: BaseException | str) -> ProcessingLog:
        """Fail the item, keeping stage flags so a requeue resumes where it stopped."""
        log = await self._get(item_id)
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
        else:
            message = error
        return await self._transition(
            item_id,
            ProcessingStatus.FAILED,
            {
                "last_error": message,
                "retry_count": log.retry_count + 1,
                "last_processed_at": self._timestamp(),
            },
        )

    async def requeue(self, item_id: str) -> ProcessingLog:
        """Failed -> pending; completed stage flags are left alone."""
        log = await self._get(item_id)
        if log.status != ProcessingStatus.FAILED:
            raise InvalidTransitionError(f"{item_id}: only failed items can be requeued (is {log.status.value})")
        return await self._transition(item_id, ProcessingStatus.PENDING)

    async def release(self, item_id: str) -> ProcessingLog:
        """Return an interrupted in-flight item to the queue."""
        return await self._transition(item_id, ProcessingStatus.PENDING)

    async def recover_interrupted(self) -> int:
        """Requeue items a crashed worker left in ``processing``.

        Only safe with a single worker per store.
        """
        recovered = 0
        while True:
            row = await asyncio.to_thread(self._store.oldest_with_status, ProcessingStatus.PROCESSING.value)
            if row is None:
                break
            await self.release(row["item_id"])
            recovered += 1
        if recovered:
            logger.warning("Requeued %d item(s) left in processing by a previous run", recovered)
        return recovered

    # -- stages ------------------------------------------------------------

    async def advance_stage(
        self, item_id: str, flag: StageFlag, extra: dict[str, Any] | None = None
    ) -> ProcessingLog:
        """Mark *flag* complete. Earlier stages must already be complete."""
        extra = extra or {}
        unknown = set(extra) - _ADVANCE_EXTRAS
        if unknown:
            raise ValueError(f"advance_stage cannot set {sorted(unknown)}")

        log = await self._get(item_id)
        for earlier in STAGE_ORDER[: STAGE_ORDER.index(flag)]:
            if not log.is_done(earlier):
                raise InvalidTransitionError(f"{item_id}: {flag.value} before {earlier.value}")

        changes = {flag.value: True, "last_processed_at": self._timestamp(), **extra}
        updated = await self._update(item_id, changes)
        logger.info("%s: %s", item_id, flag.value)
        return updated

    async def invalidate_transcript_cache(self, item_id: str) -> ProcessingLog:
        """Clear ``transcript_fetched`` after the cached copy proved corrupted."""
        logger.warning("%s: cached transcript invalidated, forcing re-fetch", item_id)
        return await self._update(
            item_id, {StageFlag.TRANSCRIPT_FETCHED.value: False, "last_processed_at": self._timestamp()}
        )
