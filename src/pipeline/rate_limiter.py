"""Batch/rest pacing for the quota-limited transcript API."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from src.pipeline_config import RateLimiterConfig

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterState:
    processed_in_batch: int = 0
    batch_limit: int = 0
    resting: bool = False


class RateLimiter:
    """Counts external calls per batch and decides when the worker rests.

    Each batch gets a random quota drawn from ``batch_size_range``; once that
    many quota-limited calls have been made the limiter enters its resting
    state until :meth:`reset_batch` is called. The RNG is injectable so
    pacing is reproducible in tests.
    """

    def __init__(self, config: RateLimiterConfig | None = None, rng: random.Random | None = None) -> None:
        self.config = config or RateLimiterConfig()
        self._rng = rng or random.Random()
        self._state = RateLimiterState(batch_limit=self._roll_batch_limit())

    def _roll_batch_limit(self) -> int:
        low, high = self.config.batch_size_range
        return self._rng.randint(low, high)

    @property
    def state(self) -> RateLimiterState:
        return RateLimiterState(
            processed_in_batch=self._state.processed_in_batch,
            batch_limit=self._state.batch_limit,
            resting=self._state.resting,
        )

    def should_rest(self) -> bool:
        return self._state.resting

    def record_external_call(self) -> None:
        self._state.processed_in_batch += 1
        if self._state.processed_in_batch >= self._state.batch_limit:
            self._state.resting = True
            logger.info(
                "Batch quota reached (%d/%d); resting before the next batch",
                self._state.processed_in_batch,
                self._state.batch_limit,
            )

    def force_rest(self) -> None:
        """Enter the resting state now, e.g. after the provider reported quota exhaustion."""
        self._state.resting = True

    def reset_batch(self) -> None:
        self._state = RateLimiterState(batch_limit=self._roll_batch_limit())
        logger.info("Starting a new batch of up to %d items", self._state.batch_limit)

    def rest_duration(self) -> float:
        """Seconds to rest between batches."""
        low, high = self.config.rest_duration_range_min
        return self._rng.uniform(low, high) * 60.0

    def next_delay(self) -> float:
        """Seconds to wait after an item that called the quota-limited API."""
        low, high = self.config.inter_request_delay_range_sec
        return self._rng.uniform(low, high)
