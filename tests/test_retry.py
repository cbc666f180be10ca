"""
Tests for retry with backoff.
"""

from unittest.mock import AsyncMock, patch

import pytest

from shared.retry import RetryConfig, calculate_delay, retry_async


def test_calculate_delay_exponential():
    """Delay should increase exponentially."""
    config = RetryConfig(base_delay=1.0, exponential_base=2.0, jitter_factor=0.0)

    assert calculate_delay(0, config) == pytest.approx(1.0)
    assert calculate_delay(1, config) == pytest.approx(2.0)
    assert calculate_delay(2, config) == pytest.approx(4.0)


def test_calculate_delay_respects_max():
    config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter_factor=0.0)

    assert calculate_delay(10, config) == pytest.approx(5.0)


def test_calculate_delay_adds_jitter():
    config = RetryConfig(base_delay=1.0, jitter_factor=0.3)

    delays = [calculate_delay(0, config) for _ in range(100)]

    assert len(set(delays)) > 1
    assert all(1.0 <= d <= 1.3 for d in delays)


def test_attempts_counts_first_call():
    assert RetryConfig(max_retries=2).attempts == 3


@pytest.mark.asyncio
async def test_success_on_first_attempt():
    func = AsyncMock(return_value="ok")

    result = await retry_async(func, config=RetryConfig(max_retries=3))

    assert result == "ok"
    assert func.await_count == 1


@pytest.mark.asyncio
async def test_success_after_retries():
    call_count = 0

    async def flaky():
        nonlocal call_count
        call_count += 1
        if call_count < 3:
            raise ValueError("temporary error")
        return "ok"

    with patch("asyncio.sleep", new=AsyncMock()) as sleep:
        result = await retry_async(flaky, config=RetryConfig(max_retries=3))

    assert result == "ok"
    assert call_count == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_exhausted_retries_reraise():
    func = AsyncMock(side_effect=ValueError("persistent"))

    with patch("asyncio.sleep", new=AsyncMock()):
        with pytest.raises(ValueError, match="persistent"):
            await retry_async(func, config=RetryConfig(max_retries=2))

    assert func.await_count == 3


@pytest.mark.asyncio
async def test_exhausted_retries_return_fallback():
    func = AsyncMock(side_effect=ValueError("persistent"))

    with patch("asyncio.sleep", new=AsyncMock()):
        result = await retry_async(func, config=RetryConfig(max_retries=2), fallback=None)

    assert result is None
    assert func.await_count == 3


@pytest.mark.asyncio
async def test_non_retryable_exception_not_retried():
    func = AsyncMock(side_effect=TypeError("bug"))
    config = RetryConfig(max_retries=3, retryable_exceptions=(ValueError,))

    with pytest.raises(TypeError):
        await retry_async(func, config=config, fallback="unused")

    assert func.await_count == 1


@pytest.mark.asyncio
async def test_passes_arguments():
    async def add(a, b, *, c=0):
        return a + b + c

    assert await retry_async(add, 1, 2, c=3) == 6


@pytest.mark.asyncio
async def test_zero_max_retries():
    func = AsyncMock(side_effect=ValueError("once"))

    with pytest.raises(ValueError):
        await retry_async(func, config=RetryConfig(max_retries=0))

    assert func.await_count == 1
