"""
Tests del retry con backoff exponencial y del fallback inline.
asyncio.sleep se parchea para no esperar de verdad.
"""

import asyncio
from unittest.mock import AsyncMock, call

import pytest

from ingestion.retry import RetryPolicy, with_fallback, with_retry


def flaky(failures: int, result: str = "ok"):
    """Operación que falla `failures` veces y luego devuelve result."""
    state = {"calls": 0}

    async def op():
        state["calls"] += 1
        if state["calls"] <= failures:
            raise ConnectionError(f"fallo {state['calls']}")
        return result

    return op, state


# ---------------------------------------------------------------------------
# with_retry
# ---------------------------------------------------------------------------


async def test_succeeds_first_try_without_sleeping(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr(asyncio, "sleep", sleep)
    op, state = flaky(0)

    assert await with_retry(op) == "ok"
    assert state["calls"] == 1
    sleep.assert_not_awaited()


async def test_recovers_after_k_failures_with_k_backoffs(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr(asyncio, "sleep", sleep)
    op, state = flaky(2)

    assert await with_retry(op, max_attempts=3, base_delay=1.0) == "ok"
    assert state["calls"] == 3
    assert sleep.await_args_list == [call(1.0), call(2.0)]


async def test_raises_original_error_after_max_attempts(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr(asyncio, "sleep", sleep)
    errors: list[Exception] = []

    async def always_fails():
        exc = TimeoutError(f"intento {len(errors)}")
        errors.append(exc)
        raise exc

    with pytest.raises(TimeoutError) as exc_info:
        await with_retry(always_fails, max_attempts=3, base_delay=0.5)

    assert exc_info.value is errors[-1]
    assert len(errors) == 3
    # Sin espera después del último intento
    assert sleep.await_args_list == [call(0.5), call(1.0)]


async def test_max_attempts_must_be_positive():
    async def op():
        return 1

    with pytest.raises(ValueError):
        await with_retry(op, max_attempts=0)


def test_policy_delays_double_each_attempt():
    policy = RetryPolicy(max_attempts=4, base_delay=1.0)
    assert [policy.delay_for(k) for k in range(3)] == [1.0, 2.0, 4.0]


# ---------------------------------------------------------------------------
# with_fallback
# ---------------------------------------------------------------------------


async def test_fallback_not_called_when_primary_succeeds():
    primary = AsyncMock(return_value="primary")
    fallback = AsyncMock(return_value="fallback")

    assert await with_fallback(primary, fallback) == "primary"
    fallback.assert_not_awaited()


async def test_fallback_used_when_primary_fails():
    primary = AsyncMock(side_effect=ConnectionError("helius down"))
    fallback = AsyncMock(return_value="fallback")

    assert await with_fallback(primary, fallback, label="getBalance") == "fallback"


async def test_fallback_error_propagates():
    primary = AsyncMock(side_effect=ConnectionError("helius down"))
    fallback = AsyncMock(side_effect=ConnectionError("public down"))

    with pytest.raises(ConnectionError, match="public down"):
        await with_fallback(primary, fallback)


async def test_fallback_runs_inside_the_same_attempt(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr(asyncio, "sleep", sleep)
    primary = AsyncMock(side_effect=ConnectionError("helius down"))
    fallback = AsyncMock(return_value=42)

    result = await with_retry(lambda: with_fallback(primary, fallback))

    assert result == 42
    assert primary.await_count == 1
    sleep.assert_not_awaited()
