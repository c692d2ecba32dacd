"""
Tests de la cola FIFO con separación mínima entre operaciones.
Usan tiempos reales cortos (decenas de ms) para medir el espaciado.
"""

import asyncio
import time

import pytest

from ingestion.fetch_queue import FetchQueue

INTERVAL = 0.05
# Margen por la resolución del reloj del event loop
TOLERANCE = 0.01


async def test_operations_run_in_submission_order():
    queue = FetchQueue(min_interval=0.0)
    order: list[int] = []

    def make_op(i: int):
        async def op():
            order.append(i)
            return i * 10
        return op

    results = await asyncio.gather(*(queue.submit(make_op(i)) for i in range(6)))

    assert order == [0, 1, 2, 3, 4, 5]
    assert results == [0, 10, 20, 30, 40, 50]


async def test_elapsed_time_respects_min_interval():
    queue = FetchQueue(min_interval=INTERVAL)
    starts: list[float] = []

    async def op():
        starts.append(time.monotonic())

    n = 5
    begin = time.monotonic()
    await asyncio.gather(*(queue.submit(op) for _ in range(n)))
    elapsed = time.monotonic() - begin

    assert elapsed >= (n - 1) * INTERVAL - TOLERANCE
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= INTERVAL - TOLERANCE for gap in gaps)


async def test_only_one_operation_runs_at_a_time():
    queue = FetchQueue(min_interval=0.0)
    running = 0
    max_running = 0

    async def op():
        nonlocal running, max_running
        running += 1
        max_running = max(max_running, running)
        await asyncio.sleep(0.005)
        running -= 1

    await asyncio.gather(*(queue.submit(op) for _ in range(5)))
    assert max_running == 1


async def test_failure_goes_to_its_caller_and_queue_continues():
    queue = FetchQueue(min_interval=0.0)

    async def boom():
        raise RuntimeError("provider down")

    async def fine():
        return "ok"

    results = await asyncio.gather(
        queue.submit(boom),
        queue.submit(fine),
        return_exceptions=True,
    )

    assert isinstance(results[0], RuntimeError)
    assert str(results[0]) == "provider down"
    assert results[1] == "ok"


async def test_worker_stops_when_drained_and_restarts_on_new_work():
    queue = FetchQueue(min_interval=0.0)

    async def op():
        return 1

    await queue.submit(op)
    await asyncio.sleep(0.01)
    assert queue.is_running is False
    assert queue.size == 0

    assert await queue.submit(op) == 1


async def test_size_counts_waiting_operations():
    queue = FetchQueue(min_interval=0.0)
    release = asyncio.Event()

    async def blocker():
        await release.wait()

    async def op():
        return None

    first = asyncio.create_task(queue.submit(blocker))
    others = [asyncio.create_task(queue.submit(op)) for _ in range(3)]
    await asyncio.sleep(0.01)

    assert queue.size == 3
    release.set()
    await asyncio.gather(first, *others)
    assert queue.size == 0


async def test_cancelled_submission_is_skipped():
    queue = FetchQueue(min_interval=0.0)
    release = asyncio.Event()
    called: list[str] = []

    async def blocker():
        await release.wait()

    async def skipped():
        called.append("skipped")

    first = asyncio.create_task(queue.submit(blocker))
    second = asyncio.create_task(queue.submit(skipped))
    await asyncio.sleep(0.01)

    second.cancel()
    with pytest.raises(asyncio.CancelledError):
        await second
    release.set()
    await first
    await asyncio.sleep(0.01)

    assert called == []
