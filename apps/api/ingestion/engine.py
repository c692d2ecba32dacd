"""
Motor de ingesta: une cola, reintentos, clientes y orquestador en una
instancia construida explícitamente (sin singletons de módulo).

Reglas:
- HELIUS_RPC_URL es obligatorio: sin él from_settings lanza ConfigurationError.
- Cada instancia tiene su propia cola y política de reintentos.
- close() cierra los clientes HTTP; llamar siempre al terminar (lifespan, CLI, scheduler).
"""

import time
from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog

from core.config import Settings
from ingestion.address_source import WalletEntry
from ingestion.addresses import NATIVE_MINT
from ingestion.balance_fetcher import BalanceFetcher
from ingestion.fetch_queue import FetchQueue
from ingestion.jupiter_client import JupiterClient
from ingestion.orchestrator import BatchOrchestrator, BatchResult
from ingestion.price_resolver import PriceResolver
from ingestion.retry import RetryPolicy
from ingestion.rpc_client import SolanaRpcClient
from services.cache_store import CacheStore

logger = structlog.get_logger(__name__)


class ConfigurationError(Exception):
    pass


class IngestionEngine:
    """
    Uso:
        engine = IngestionEngine.from_settings(settings, store)
        try:
            result = await engine.run_batch(wallets)
        finally:
            await engine.close()
    """

    def __init__(
        self,
        store: CacheStore,
        primary: SolanaRpcClient,
        fallback: SolanaRpcClient,
        jupiter: JupiterClient,
        *,
        rate_limit_delay: float = 0.1,
        policy: RetryPolicy | None = None,
        batch_size: int = 5,
        batch_delay: float = 2.0,
        chunk_size: int = 10,
        chunk_delay: float = 0.1,
        pipeline_timeout: float | None = 120.0,
        native_fallback_price: Decimal = Decimal("150"),
        stale_price_minutes: int = 30,
    ) -> None:
        self.store = store
        self.primary = primary
        self.fallback = fallback
        self.jupiter = jupiter
        self.policy = policy or RetryPolicy()
        self.batch_size = batch_size
        self.stale_price_minutes = stale_price_minutes

        self.queue = FetchQueue(min_interval=rate_limit_delay)
        self.fetcher = BalanceFetcher(primary, fallback, self.queue, store, self.policy)
        self.resolver = PriceResolver(
            jupiter,
            store,
            native_fallback_price=native_fallback_price,
            chunk_size=chunk_size,
            chunk_delay=chunk_delay,
            policy=self.policy,
        )
        self.orchestrator = BatchOrchestrator(
            self.fetcher,
            self.resolver,
            store,
            batch_delay=batch_delay,
            pipeline_timeout=pipeline_timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings, store: CacheStore) -> "IngestionEngine":
        if not settings.HELIUS_RPC_URL:
            raise ConfigurationError("HELIUS_RPC_URL es obligatorio para la ingesta")

        logger.info(
            "engine.configured",
            rate_limit_delay_ms=settings.RATE_LIMIT_DELAY_MS,
            max_retries=settings.MAX_RETRIES,
            batch_size=settings.BATCH_SIZE,
        )
        return cls(
            store,
            primary=SolanaRpcClient(settings.HELIUS_RPC_URL, name="helius"),
            fallback=SolanaRpcClient(settings.FALLBACK_RPC_URL, name="fallback"),
            jupiter=JupiterClient(settings.JUPITER_API_URL, settings.JUPITER_TOKENS_API_URL),
            rate_limit_delay=settings.RATE_LIMIT_DELAY_MS / 1000,
            policy=RetryPolicy(
                max_attempts=settings.MAX_RETRIES,
                base_delay=settings.RETRY_BASE_DELAY_MS / 1000,
            ),
            batch_size=settings.BATCH_SIZE,
            batch_delay=settings.BATCH_DELAY_MS / 1000,
            chunk_size=settings.METADATA_CHUNK_SIZE,
            chunk_delay=settings.METADATA_CHUNK_DELAY_MS / 1000,
            pipeline_timeout=settings.PIPELINE_TIMEOUT_SECONDS or None,
            native_fallback_price=Decimal(settings.NATIVE_PRICE_FALLBACK_USD),
            stale_price_minutes=settings.STALE_PRICE_MINUTES,
        )

    async def __aenter__(self) -> "IngestionEngine":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self.primary.close()
        await self.fallback.close()
        await self.jupiter.close()

    @property
    def queue_size(self) -> int:
        return self.queue.size

    # -----------------------------------------------------------------------
    # Operaciones
    # -----------------------------------------------------------------------

    async def run_batch(self, wallets: Sequence[WalletEntry], batch_size: int | None = None) -> BatchResult:
        return await self.orchestrator.run_batch(wallets, batch_size=batch_size or self.batch_size)

    async def run_pending(
        self,
        wallets: Sequence[WalletEntry],
        batch_size: int | None = None,
        max_age_minutes: int = 10,
        force_refresh: bool = False,
    ) -> BatchResult:
        return await self.orchestrator.run_pending(
            wallets,
            batch_size=batch_size or self.batch_size,
            max_age_minutes=max_age_minutes,
            force_refresh=force_refresh,
        )

    async def refresh_stale_prices(self, max_age_minutes: int | None = None) -> int:
        minutes = max_age_minutes if max_age_minutes is not None else self.stale_price_minutes
        return await self.resolver.refresh_stale_prices(minutes)

    async def get_native_price(self) -> Decimal:
        return await self.resolver.get_native_price()

    async def health_check(self) -> dict[str, Any]:
        """getSlot contra el RPC principal + consulta mínima a Jupiter."""
        try:
            start = time.monotonic()
            slot = await self.primary.get_slot()
            rpc_ms = int((time.monotonic() - start) * 1000)

            start = time.monotonic()
            jupiter_status = await self.jupiter.ping(NATIVE_MINT)
            jupiter_ms = int((time.monotonic() - start) * 1000)
        except Exception as exc:
            logger.warning("engine.health_failed", error=str(exc))
            return {
                "status": "unhealthy",
                "details": {
                    "error": str(exc) or type(exc).__name__,
                    "queue_size": self.queue_size,
                    "last_check": datetime.now(timezone.utc).isoformat(),
                },
            }

        return {
            "status": "healthy",
            "details": {
                # La URL del RPC principal lleva la API key
                "rpc": {"url": "[REDACTED]", "slot": slot, "response_time_ms": rpc_ms},
                "jupiter": {
                    "url": self.jupiter.price_url,
                    "status": jupiter_status,
                    "response_time_ms": jupiter_ms,
                },
                "queue_size": self.queue_size,
                "last_check": datetime.now(timezone.utc).isoformat(),
            },
        }
