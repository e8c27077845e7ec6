"""Pytest configuration and fixtures."""

from typing import AsyncIterator

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis

from flakeguard.core.clock import FrozenClock
from flakeguard.core.config import Settings
from flakeguard.services.engine import QuarantineEngine, build_engine
from factories import NOW


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        evaluation_timeout_seconds=5.0,
        transition_lock_retry_delay_seconds=0.0,
        notification_webhook_url="",
        smtp_host="",
    )


@pytest_asyncio.fixture
async def redis() -> AsyncIterator[FakeAsyncRedis]:
    """In-memory Redis double speaking the asyncio client API."""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def engine(redis: FakeAsyncRedis, settings: Settings, clock: FrozenClock) -> QuarantineEngine:
    return build_engine(redis, settings, clock=clock)
