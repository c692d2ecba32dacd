"""
Orquestador de lotes de wallets.

Reglas:
- Chunks de batch_size procesados en secuencia; dentro de un chunk todas las
  wallets en paralelo, esperando a que terminen todas (gather con return_exceptions).
- Un fallo de wallet nunca aborta el lote: suma a failed y añade "{address}: {mensaje}".
- Cada wallet se persiste al terminar, no al final del lote: una ejecución
  interrumpida se reanuda volviendo a lanzarla (upsert idempotente).
- Cada pipeline tiene un deadline (asyncio.wait_for) para que un proveedor
  colgado no bloquee el lote.
  Al vencer deja un FetchLog "pipeline" además del registro en error.
- Al final se escriben las métricas del lote en system_metrics.
"""

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import structlog

from ingestion.address_source import WalletEntry
from ingestion.addresses import InvalidAddressError, validate_address
from ingestion.balance_fetcher import BalanceFetcher, TokenHolding
from ingestion.price_resolver import PriceQuote, PriceResolver, ResolutionStatus, TokenMetadata
from models.base import as_utc, utcnow
from models.wallet_balance import WalletBalance
from services.cache_store import CacheStore

logger = structlog.get_logger(__name__)


class PipelineTimeoutError(Exception):
    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(f"timed out after {seconds:g}s")


# ---------------------------------------------------------------------------
# Resultado del lote
# ---------------------------------------------------------------------------


@dataclass
class BatchResult:
    successful: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def total(self) -> int:
        return self.successful + self.failed

    @property
    def duration_ms(self) -> int:
        if self.finished_at:
            return int((self.finished_at - self.started_at).total_seconds() * 1000)
        return 0

    def finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class WalletValuation:
    address: str
    native_balance: Decimal
    holdings: list[TokenHolding]
    total_usd_value: Decimal


def enrich_holdings(
    holdings: Sequence[TokenHolding],
    metadata: dict[str, TokenMetadata],
    quotes: dict[str, PriceQuote],
) -> list[TokenHolding]:
    """
    Símbolo y nombre: metadata, si no datos del precio, si no "Unknown".
    usd_value = amount * price, 0 si el token no tiene precio.
    """
    enriched: list[TokenHolding] = []
    for holding in holdings:
        meta = metadata.get(holding.mint)
        quote = quotes.get(holding.mint)
        symbol = (meta.symbol if meta else None) or (quote.symbol if quote else None) or "Unknown"
        name = (meta.name if meta else None) or (quote.name if quote else None) or "Unknown Token"
        usd_value = holding.amount * quote.price if quote else Decimal("0")
        enriched.append(holding.enrich(symbol=symbol, name=name, usd_value=usd_value))
    return enriched


def select_pending(
    wallets: Iterable[WalletEntry],
    records: dict[str, WalletBalance],
    max_age_minutes: int,
    force_refresh: bool = False,
    now: datetime | None = None,
) -> list[WalletEntry]:
    """
    Wallets que hay que (re)procesar: sin registro, con error, pendientes
    o con un éxito más antiguo que max_age_minutes.
    records: {address: WalletBalance} leído de la caché.
    """
    wallets = list(wallets)
    if force_refresh:
        return wallets
    cutoff = (now or utcnow()) - timedelta(minutes=max_age_minutes)

    pending: list[WalletEntry] = []
    for wallet in wallets:
        record = records.get(wallet.address)
        if (
            record is not None
            and record.fetch_status == "success"
            and as_utc(record.last_updated) >= cutoff
        ):
            continue
        pending.append(wallet)
    return pending


# ---------------------------------------------------------------------------
# Orquestador
# ---------------------------------------------------------------------------


class BatchOrchestrator:
    """
    Uso:
        orchestrator = BatchOrchestrator(fetcher, resolver, store)
        result = await orchestrator.run_batch(wallets, batch_size=5)
    """

    def __init__(
        self,
        fetcher: BalanceFetcher,
        resolver: PriceResolver,
        store: CacheStore,
        batch_delay: float = 2.0,
        pipeline_timeout: float | None = 120.0,
    ) -> None:
        self.fetcher = fetcher
        self.resolver = resolver
        self.store = store
        self.batch_delay = batch_delay
        self.pipeline_timeout = pipeline_timeout

    async def run_batch(self, wallets: Sequence[WalletEntry], batch_size: int = 5) -> BatchResult:
        if batch_size < 1:
            raise ValueError("batch_size debe ser >= 1")
        result = BatchResult()
        log = logger.bind(wallets=len(wallets), batch_size=batch_size)
        log.info("batch.start")

        for i in range(0, len(wallets), batch_size):
            chunk = wallets[i : i + batch_size]
            outcomes = await asyncio.gather(
                *(self._run_with_deadline(wallet) for wallet in chunk),
                return_exceptions=True,
            )
            for wallet, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    result.failed += 1
                    result.errors.append(f"{wallet.address}: {_message(outcome)}")
                else:
                    result.successful += 1

            log.info("batch.chunk_done", chunk=i // batch_size + 1, successful=result.successful, failed=result.failed)
            if i + batch_size < len(wallets):
                await asyncio.sleep(self.batch_delay)

        result.finish()
        await self._record_metrics(result)
        log.info(
            "batch.complete",
            successful=result.successful,
            failed=result.failed,
            duration_ms=result.duration_ms,
        )
        return result

    async def run_pending(
        self,
        wallets: Sequence[WalletEntry],
        batch_size: int = 5,
        max_age_minutes: int = 10,
        force_refresh: bool = False,
    ) -> BatchResult:
        """Reanudación: solo las wallets sin datos, con error o caducadas."""
        records = {
            record.wallet_address: record
            for record in await self.store.get_wallet_balances([w.address for w in wallets])
        }
        pending = select_pending(wallets, records, max_age_minutes, force_refresh=force_refresh)
        logger.info("batch.resume", total=len(wallets), pending=len(pending), skipped=len(wallets) - len(pending))
        return await self.run_batch(pending, batch_size=batch_size)

    async def _run_with_deadline(self, wallet: WalletEntry) -> WalletValuation:
        if self.pipeline_timeout is None:
            return await self.process_wallet(wallet)
        try:
            return await asyncio.wait_for(self.process_wallet(wallet), timeout=self.pipeline_timeout)
        except asyncio.TimeoutError as exc:
            error = PipelineTimeoutError(self.pipeline_timeout)
            logger.error("batch.wallet_timeout", address=wallet.address, seconds=self.pipeline_timeout)
            await self.store.insert_fetch_log(
                wallet_address=wallet.address,
                operation="pipeline",
                status="error",
                response_time_ms=round(self.pipeline_timeout * 1000),
                error_details=str(error),
            )
            await self._persist_error(wallet, error)
            raise error from exc

    async def process_wallet(self, wallet: WalletEntry) -> WalletValuation:
        """
        Pipeline de una wallet: validar → saldos → metadata + precios → enriquecer → persistir.
        Ante cualquier error persiste el registro en estado error y relanza.
        """
        log = logger.bind(address=wallet.address, wallet_id=wallet.wallet_id)
        try:
            validate_address(wallet.address)
        except InvalidAddressError as exc:
            await self.store.insert_fetch_log(
                wallet_address=wallet.address,
                operation="validate",
                status="error",
                response_time_ms=0,
                error_details=str(exc),
            )
            await self._persist_error(wallet, exc)
            log.warning("batch.invalid_address")
            raise

        try:
            balances = await self.fetcher.fetch(wallet.address)
            mints = [holding.mint for holding in balances.holdings]

            metadata: dict[str, TokenMetadata] = {}
            quotes: dict[str, PriceQuote] = {}
            if mints:
                resolutions, quotes = await asyncio.gather(
                    self.resolver.resolve_metadata(mints),
                    self.resolver.resolve(mints),
                )
                metadata = {
                    mint: resolution.value
                    for mint, resolution in resolutions.items()
                    if resolution.status != ResolutionStatus.FAILED and resolution.value is not None
                }

            holdings = enrich_holdings(balances.holdings, metadata, quotes)
            # Solo tokens: el saldo nativo se reporta aparte y no suma al total USD
            total = sum((h.usd_value or Decimal("0") for h in holdings), Decimal("0"))

            await self.store.upsert_wallet_balance(
                wallet_address=wallet.address,
                wallet_id=wallet.wallet_id,
                sol_balance=balances.native_balance,
                tokens=[h.to_json() for h in holdings],
                total_usd_value=total,
                fetch_status="success",
            )
        except Exception as exc:
            log.warning("batch.wallet_failed", error=_message(exc))
            await self._persist_error(wallet, exc)
            raise

        log.debug("batch.wallet_done", tokens=len(holdings), total_usd_value=str(total))
        return WalletValuation(
            address=wallet.address,
            native_balance=balances.native_balance,
            holdings=holdings,
            total_usd_value=total,
        )

    async def _persist_error(self, wallet: WalletEntry, exc: BaseException) -> None:
        try:
            await self.store.upsert_wallet_balance(
                wallet_address=wallet.address,
                wallet_id=wallet.wallet_id,
                sol_balance=Decimal("0"),
                tokens=[],
                total_usd_value=Decimal("0"),
                fetch_status="error",
                error_message=_message(exc),
            )
        except Exception as store_exc:
            # El error original es el que se reporta al lote
            logger.error("batch.persist_error_failed", address=wallet.address, error=str(store_exc))

    async def _record_metrics(self, result: BatchResult) -> None:
        metrics = {
            "last_batch_at": (result.finished_at or utcnow()).isoformat(),
            "last_batch_successful": str(result.successful),
            "last_batch_failed": str(result.failed),
            "last_batch_duration_ms": str(result.duration_ms),
        }
        try:
            for name, value in metrics.items():
                await self.store.upsert_system_metric(name, value)
        except Exception as exc:
            logger.error("batch.metrics_failed", error=str(exc))


def _message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
