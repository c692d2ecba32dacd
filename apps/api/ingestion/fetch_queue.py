"""
Cola FIFO de peticiones al RPC principal.

Reglas:
- Una operación a la vez, en orden estricto de llegada.
- Separación mínima min_interval entre el inicio de operaciones consecutivas
  (100 ms por defecto, ~600 req/min), sin importar cuántos callers envíen.
- El worker arranca cuando llega trabajo y termina cuando la cola se vacía.
- Los errores vuelven solo al caller que envió la operación; la cola no los interpreta.
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class FetchQueue:
    """
    Uso:
        queue = FetchQueue(min_interval=0.1)
        balance = await queue.submit(lambda: rpc.get_balance(address))
    """

    def __init__(self, min_interval: float = 0.1) -> None:
        self.min_interval = min_interval
        self._pending: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._worker: asyncio.Task | None = None
        self._last_start: float | None = None

    @property
    def size(self) -> int:
        """Operaciones en espera (sin contar la que se está ejecutando)."""
        return len(self._pending)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def submit(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Encola la operación y espera su resultado (o su excepción)."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending.append((operation, future))
        if not self.is_running:
            self._worker = asyncio.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        while self._pending:
            operation, future = self._pending.popleft()
            if future.cancelled():
                # El caller ya no espera el resultado: no gastar una petición
                continue

            await self._wait_turn()
            self._last_start = time.monotonic()
            try:
                result = await operation()
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)

        logger.debug("fetch_queue.drained")

    async def _wait_turn(self) -> None:
        if self._last_start is None:
            return
        elapsed = time.monotonic() - self._last_start
        if elapsed < self.min_interval:
            await asyncio.sleep(self.min_interval - elapsed)
