"""Tests for the retry executor and error classification."""

from __future__ import annotations

import asyncio

import pytest

from src.pipeline.errors import (
    DataCorruptedError,
    ErrorKind,
    FatalError,
    OperationCancelledError,
    QuotaExceededError,
    TransientError,
    classify_http_status,
    error_kind,
    is_transient,
)
from src.pipeline.retry import backoff_delay, retry_with_policy, with_retry
from src.pipeline_config import RetryPolicy


class Flaky:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, errors: list[Exception], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class SleepRecorder:
    def __init__(self) -> None:
        self.waits: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


class TestBackoffDelay:
    def test_doubles_then_caps(self) -> None:
        assert [backoff_delay(a, 1.0, 30.0) for a in range(7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


class TestWithRetry:
    def test_success_needs_no_wait(self) -> None:
        op, sleep = Flaky([]), SleepRecorder()
        assert asyncio.run(with_retry(op, sleep=sleep)) == "ok"
        assert op.calls == 1
        assert sleep.waits == []

    def test_recovers_after_transient_failures(self) -> None:
        op, sleep = Flaky([TransientError("t1"), TransientError("t2")]), SleepRecorder()
        result = asyncio.run(with_retry(op, max_retries=3, should_retry=is_transient, sleep=sleep))
        assert result == "ok"
        assert op.calls == 3
        assert sleep.waits == [1.0, 2.0]

    def test_attempts_bounded_by_max_retries(self) -> None:
        errors = [TransientError(f"t{i}") for i in range(5)]
        op, sleep = Flaky(errors), SleepRecorder()
        with pytest.raises(TransientError, match="t2"):
            asyncio.run(with_retry(op, max_retries=2, sleep=sleep))
        assert op.calls == 3
        assert sleep.waits == [1.0, 2.0]

    def test_wait_capped_by_max_delay(self) -> None:
        op, sleep = Flaky([TransientError("t")] * 3), SleepRecorder()
        asyncio.run(with_retry(op, max_retries=3, base_delay=10.0, max_delay=15.0, sleep=sleep))
        assert sleep.waits == [10.0, 15.0, 15.0]

    def test_fatal_error_is_not_retried(self) -> None:
        op, sleep = Flaky([FatalError("bad input")]), SleepRecorder()
        with pytest.raises(FatalError):
            asyncio.run(with_retry(op, should_retry=is_transient, sleep=sleep))
        assert op.calls == 1
        assert sleep.waits == []

    def test_on_retry_observes_each_retry(self) -> None:
        seen: list[tuple[str, int, float]] = []
        op = Flaky([TransientError("a"), TransientError("b")])
        asyncio.run(
            with_retry(
                op,
                on_retry=lambda err, attempt, wait: seen.append((str(err), attempt, wait)),
                sleep=SleepRecorder(),
            )
        )
        assert seen == [("a", 0, 1.0), ("b", 1, 2.0)]

    def test_stop_event_cancels_during_backoff(self) -> None:
        async def scenario() -> Flaky:
            stop = asyncio.Event()
            op = Flaky([TransientError("t")] * 3)

            async def sleep(seconds: float) -> None:
                stop.set()

            with pytest.raises(OperationCancelledError):
                await with_retry(op, sleep=sleep, stop_event=stop)
            return op

        assert asyncio.run(scenario()).calls == 1

    def test_retry_with_policy(self) -> None:
        op, sleep = Flaky([TransientError("t")]), SleepRecorder()
        policy = RetryPolicy(max_retries=1, base_delay=0.5, max_delay=1.0)
        assert asyncio.run(retry_with_policy(op, policy, sleep=sleep)) == "ok"
        assert sleep.waits == [0.5]


class TestErrorClassification:
    def test_is_transient_is_a_tag_switch(self) -> None:
        assert is_transient(TransientError("x"))
        assert not is_transient(FatalError("x"))
        assert not is_transient(QuotaExceededError("x"))
        assert not is_transient(DataCorruptedError("x"))
        assert not is_transient(RuntimeError("temporarily unavailable"))

    def test_error_kind(self) -> None:
        assert error_kind(QuotaExceededError("x")) is ErrorKind.QUOTA_EXCEEDED
        assert error_kind(ValueError("x")) is None

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    def test_retryable_statuses(self, status: int) -> None:
        err = classify_http_status(status)
        assert isinstance(err, TransientError)
        assert err.status_code == status

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_fatal_statuses(self, status: int) -> None:
        assert isinstance(classify_http_status(status, "nope"), FatalError)
