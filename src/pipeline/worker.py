"""Cooperative, rate-limited worker loop over the processing-log queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from enum import StrEnum

from src.ingestion.chunking import TokenCounter
from src.pipeline.errors import OperationCancelledError, QuotaExceededError
from src.pipeline.rate_limiter import RateLimiter
from src.pipeline.retry import Sleep
from src.pipeline.stages import Collaborators, ItemOutcome, ItemPipeline, ItemStats
from src.pipeline.tracker import ProcessingLog, StageTracker
from src.pipeline_config import ChunkingBudget, RetryPolicy, WorkerConfig

logger = logging.getLogger(__name__)


class IterationOutcome(StrEnum):
    RESTED = "rested"
    IDLE = "idle"
    SKIPPED = "skipped"
    PROCESSED = "processed"
    NO_TRANSCRIPT = "no_transcript"
    FAILED = "failed"
    ERROR = "error"
    STOPPED = "stopped"


class ProcessingWorker:
    """Polls the oldest pending item and drives it through :class:`ItemPipeline`.

    Only one worker may run against a given processing-log store: there is
    no claim or lease on rows. Every sleep wakes early when :meth:`stop` is
    called, and retry waits inside the pipeline observe the same signal.
    """

    def __init__(
        self,
        tracker: StageTracker,
        collaborators: Collaborators,
        *,
        budget: ChunkingBudget | None = None,
        languages: Sequence[str] = ("en", "ko"),
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        config: WorkerConfig | None = None,
        token_counter: TokenCounter | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.tracker = tracker
        self.rate_limiter = rate_limiter or RateLimiter()
        self.config = config or WorkerConfig()
        self._stop = asyncio.Event()
        self._custom_sleep = sleep
        self.pipeline = ItemPipeline(
            tracker,
            collaborators,
            budget,
            languages=languages,
            retry_policy=retry_policy,
            token_counter=token_counter,
            sleep=self._sleep,
            stop_event=self._stop,
        )

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to finish; pending sleeps return immediately."""
        logger.info("Stop requested")
        self._stop.set()

    async def _sleep(self, seconds: float) -> None:
        if seconds <= 0 or self._stop.is_set():
            return
        if self._custom_sleep is not None:
            await self._custom_sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def run(self, max_iterations: int | None = None) -> int:
        """Loop until :meth:`stop` is called or *max_iterations* is reached.

        Returns:
            Number of iterations executed.
        """
        await self.tracker.recover_interrupted()
        logger.info("Worker started (batch limit %d)", self.rate_limiter.state.batch_limit)

        iterations = 0
        while not self._stop.is_set():
            if max_iterations is not None and iterations >= max_iterations:
                break
            await self.run_once()
            iterations += 1

        logger.info("Worker stopped after %d iterations", iterations)
        return iterations

    async def run_once(self) -> IterationOutcome:
        """Execute a single loop iteration."""
        if self._stop.is_set():
            return IterationOutcome.STOPPED

        try:
            if self.rate_limiter.should_rest():
                rest = self.rate_limiter.rest_duration()
                logger.info("Resting for %.1f minutes", rest / 60.0)
                await self._sleep(rest)
                self.rate_limiter.reset_batch()
                return IterationOutcome.RESTED

            log = await self.tracker.next_pending()
            if log is None:
                logger.debug("No pending items; sleeping %.0fs", self.config.idle_poll_interval_sec)
                await self._sleep(self.config.idle_poll_interval_sec)
                return IterationOutcome.IDLE

            if log.transcript_exists is False:
                await self.tracker.mark_completed(log.item_id)
                logger.info("%s: no transcript recorded earlier; marked completed", log.item_id)
                return IterationOutcome.SKIPPED

            return await self._process(log)
        except OperationCancelledError:
            return IterationOutcome.STOPPED
        except Exception:
            logger.exception("Worker iteration failed; backing off %.0fs", self.config.error_backoff_sec)
            await self._sleep(self.config.error_backoff_sec)
            return IterationOutcome.ERROR

    async def _process(self, log: ProcessingLog) -> IterationOutcome:
        item_id = log.item_id
        log = await self.tracker.mark_processing(item_id)
        logger.info("Processing %s (remaining: %s)", item_id, ", ".join(log.remaining_stages) or "none")

        stats = ItemStats()
        try:
            await self.pipeline.process(log, stats)
        except OperationCancelledError:
            logger.info("%s interrupted; returning it to the queue", item_id)
            await self.tracker.release(item_id)
            raise
        except Exception as exc:
            logger.exception("%s failed", item_id)
            await self.tracker.mark_failed(item_id, exc)
            if isinstance(exc, QuotaExceededError):
                logger.warning("Quota exhausted; forcing a rest before the next batch")
                self.rate_limiter.force_rest()
            outcome = IterationOutcome.FAILED
        else:
            if stats.outcome == ItemOutcome.NO_TRANSCRIPT:
                outcome = IterationOutcome.NO_TRANSCRIPT
            else:
                outcome = IterationOutcome.PROCESSED

        await self._pace(stats)
        return outcome

    async def _pace(self, stats: ItemStats) -> None:
        if stats.external_calls:
            self.rate_limiter.record_external_call()
            if self.rate_limiter.should_rest():
                return
            delay = self.rate_limiter.next_delay()
            logger.debug("Waiting %.0fs before the next item", delay)
            await self._sleep(delay)
        else:
            await self._sleep(self.config.cache_hit_delay_sec)
