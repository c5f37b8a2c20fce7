"""Pipeline configuration: chunking budget, retry policy and worker pacing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.config import Settings


@dataclass(frozen=True)
class ChunkingBudget:
    """Immutable length/duration budget for the chunking engine.

    Lengths are characters unless a token counter is handed to
    :func:`src.ingestion.chunking.chunk` together with at least one of the
    ``*_tokens`` budgets, in which case the token budgets win.
    """

    max_len: int = 800
    overlap_len: int = 150
    min_len: int = 400
    max_duration_sec: float | None = 120.0
    min_duration_sec: float | None = 30.0
    drop_unit_under: int = 3
    coalesce_max_gap_sec: float = 0.8
    coalesce_min_group_len: int = 40

    max_tokens: int | None = None
    overlap_tokens: int | None = None
    min_tokens: int | None = None

    merge_small_tail: bool = True
    clean_text: bool = True
    use_coalesce: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> ChunkingBudget:
        return cls(
            max_len=settings.chunk_max_len,
            overlap_len=settings.chunk_overlap_len,
            min_len=settings.chunk_min_len,
            max_duration_sec=settings.chunk_max_duration_sec,
            min_duration_sec=settings.chunk_min_duration_sec,
            drop_unit_under=settings.chunk_drop_unit_under,
            coalesce_max_gap_sec=settings.chunk_coalesce_max_gap_sec,
            coalesce_min_group_len=settings.chunk_coalesce_min_group_len,
        )

    def wants_tokens(self) -> bool:
        return any(v is not None for v in (self.max_tokens, self.overlap_tokens, self.min_tokens))


@dataclass(frozen=True)
class RetryPolicy:
    """Numeric options for :func:`src.pipeline.retry.with_retry`."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay_sec,
            max_delay=settings.retry_max_delay_sec,
        )


@dataclass(frozen=True)
class RateLimiterConfig:
    """Batch/rest schedule for the quota-limited transcript API."""

    batch_size_range: tuple[int, int] = (10, 15)
    inter_request_delay_range_sec: tuple[float, float] = (60.0, 300.0)
    rest_duration_range_min: tuple[float, float] = (20.0, 40.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiterConfig:
        return cls(
            batch_size_range=settings.batch_size_range,
            inter_request_delay_range_sec=settings.inter_request_delay_range_sec,
            rest_duration_range_min=settings.rest_duration_range_min,
        )


@dataclass(frozen=True)
class WorkerConfig:
    """Fixed sleeps used by the worker loop, in seconds."""

    idle_poll_interval_sec: float = 600.0
    cache_hit_delay_sec: float = 5.0
    error_backoff_sec: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkerConfig:
        return cls(
            idle_poll_interval_sec=settings.idle_poll_interval_sec,
            cache_hit_delay_sec=settings.cache_hit_delay_sec,
            error_backoff_sec=settings.error_backoff_sec,
        )
