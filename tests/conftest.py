"""Shared fixtures: an in-memory tracker, fake collaborators and a fixed rate limiter."""

from __future__ import annotations

import random

import pytest

from src.pipeline.rate_limiter import RateLimiter
from src.pipeline.tracker import InMemoryProcessingLogStore, StageTracker
from src.pipeline_config import RateLimiterConfig
from tests.helpers import FakeServices, ticking_clock


@pytest.fixture
def store() -> InMemoryProcessingLogStore:
    return InMemoryProcessingLogStore()


@pytest.fixture
def tracker(store: InMemoryProcessingLogStore) -> StageTracker:
    return StageTracker(store, now=ticking_clock())


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def fixed_limiter() -> RateLimiter:
    """Batch of exactly 2, 60s between items, 20 minute rests."""
    config = RateLimiterConfig(
        batch_size_range=(2, 2),
        inter_request_delay_range_sec=(60.0, 60.0),
        rest_duration_range_min=(20.0, 20.0),
    )
    return RateLimiter(config, rng=random.Random(0))
