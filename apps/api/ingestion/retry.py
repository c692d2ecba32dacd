"""
Reintentos con backoff exponencial y fallback inline a un proveedor secundario.

Reglas:
- Intento k (base 0) fallido → esperar base_delay * 2**k y reintentar.
- Tras el último intento se relanza la última excepción sin modificar.
- Todos los errores se reintentan igual: las direcciones se validan antes,
  así que un error no recuperable nunca llega hasta aquí.
- El fallback se prueba dentro del mismo intento, no como ciclo aparte.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0  # segundos

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
) -> T:
    """Ejecuta operation() hasta max_attempts veces con backoff exponencial."""
    if max_attempts < 1:
        raise ValueError("max_attempts debe ser >= 1")
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=base_delay)

    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except Exception as exc:
            if attempt == policy.max_attempts - 1:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry.attempt_failed",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                retry_in_seconds=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)

    # Inalcanzable: el bucle retorna o relanza
    raise RuntimeError("with_retry terminó sin resultado")


async def with_fallback(
    primary: Callable[[], Awaitable[T]],
    fallback: Callable[[], Awaitable[T]],
    label: str = "",
) -> T:
    """Ejecuta primary(); si falla, fallback() en el mismo intento."""
    try:
        return await primary()
    except Exception as exc:
        logger.warning("retry.primary_failed", operation=label, error=str(exc))
        return await fallback()
