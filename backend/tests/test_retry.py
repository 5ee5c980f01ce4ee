"""
Tests for Retry

Tests retry_async backoff and which errors are retried.
"""

import pytest
from common import retry as retry_module
from common.errors import ProviderRejectedError, ProviderTransientError
from common.retry import backoff_delay, retry_async


class TestBackoffDelay:
    CASES = [
        (1, 500, 0.5),
        (2, 500, 1.0),
        (3, 500, 2.0),
        (1, 0, 0.0),
    ]

    @pytest.mark.parametrize("attempt,backoff_ms,expected", CASES)
    def test_exponential(self, attempt, backoff_ms, expected):
        assert backoff_delay(attempt, backoff_ms) == expected


class Flaky:
    """Raises the given errors in order, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr(retry_module.asyncio, "sleep", fake_sleep)
    return recorded


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_first_try(self, sleeps):
        call = Flaky()
        assert await retry_async(call, 3, 500) == "ok"
        assert call.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient(self, sleeps):
        call = Flaky(ProviderTransientError("503"), ProviderTransientError("503"))
        assert await retry_async(call, 3, 500) == "ok"
        assert call.calls == 3
        assert sleeps == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up(self, sleeps):
        call = Flaky(*[ProviderTransientError("timeout") for _ in range(5)])
        with pytest.raises(ProviderTransientError):
            await retry_async(call, 3, 100)
        assert call.calls == 3
        assert sleeps == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self, sleeps):
        call = Flaky(ProviderRejectedError("400"))
        with pytest.raises(ProviderRejectedError):
            await retry_async(call, 3, 500)
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_attempts_below_one(self, sleeps):
        call = Flaky(ProviderTransientError("503"))
        with pytest.raises(ProviderTransientError):
            await retry_async(call, 0, 500)
        assert call.calls == 1
