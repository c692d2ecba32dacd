"""
Resolución de metadata (símbolo, nombre, logo) y precios USD de tokens.

Reglas:
- Metadata en dos niveles: una petición bulk al catálogo de Jupiter; si falla,
  peticiones por mint en chunks de 10 con 100 ms entre chunks.
- Si el catálogo falla, el fallo se recuerda catalog_retry_after segundos: las
  llamadas concurrentes pasan directamente al nivel por mint.
- Cada mint queda resolved, unknown (centinela "Unknown"/"Unknown Token")
  o failed (se omite del resultado plano y se loguea como warning).
- Toda consulta de precios incluye el mint nativo, así el precio de SOL
  se refresca como efecto secundario de cualquier consulta.
- Los precios resueltos se guardan con upsert (source "jupiter") y cada
  consulta deja un FetchLog "prices" a nombre de "system".
- get_native_price() nunca lanza: precio en caché o NATIVE_PRICE_FALLBACK_USD.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from ingestion.addresses import NATIVE_MINT
from ingestion.jupiter_client import JupiterClient
from ingestion.retry import RetryPolicy, with_retry
from services.cache_store import CacheStore

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

PRICE_SOURCE = "jupiter"
NATIVE_LOGO_URL = (
    "https://raw.githubusercontent.com/solana-labs/token-list/main/assets/mainnet/"
    "So11111111111111111111111111111111111111112/logo.png"
)


# ---------------------------------------------------------------------------
# Tipos
# ---------------------------------------------------------------------------


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    UNKNOWN = "unknown"
    FAILED = "failed"


@dataclass(frozen=True)
class Resolution(Generic[V]):
    status: ResolutionStatus
    value: V | None = None
    error: str | None = None


@dataclass(frozen=True)
class TokenMetadata:
    symbol: str
    name: str
    image_url: str | None = None


UNKNOWN_METADATA = TokenMetadata(symbol="Unknown", name="Unknown Token")
NATIVE_METADATA = TokenMetadata(symbol="SOL", name="Solana", image_url=NATIVE_LOGO_URL)

MetadataResolution = Resolution[TokenMetadata]


@dataclass(frozen=True)
class PriceQuote:
    mint: str
    price: Decimal
    symbol: str
    name: str
    change_24h: Decimal | None = None
    market_cap: Decimal | None = None
    image_url: str | None = None


def _unique(keys: Iterable[K]) -> list[K]:
    return list(dict.fromkeys(keys))


# ---------------------------------------------------------------------------
# Estrategia genérica en dos niveles
# ---------------------------------------------------------------------------


async def resolve_two_tier(
    keys: Iterable[K],
    bulk: Callable[[], Awaitable[Mapping[K, V]]],
    single: Callable[[K], Awaitable[V | None]],
    default: V | None = None,
    chunk_size: int = 10,
    chunk_delay: float = 0.1,
) -> dict[K, Resolution[V]]:
    """
    Resuelve keys con una llamada bulk y, si esta falla, con llamadas
    individuales en chunks concurrentes.

    - bulk() → lookup completo; las keys ausentes quedan UNKNOWN con default.
    - single(key) → valor, o None si el proveedor no conoce la key (UNKNOWN).
      Si single lanza, la key queda FAILED.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size debe ser >= 1")
    ordered = _unique(keys)
    if not ordered:
        return {}

    try:
        lookup = await bulk()
    except Exception as exc:
        logger.warning("resolver.bulk_failed", keys=len(ordered), error=str(exc))
    else:
        return {
            key: Resolution(ResolutionStatus.RESOLVED, lookup[key])
            if key in lookup
            else Resolution(ResolutionStatus.UNKNOWN, default)
            for key in ordered
        }

    results: dict[K, Resolution[V]] = {}
    for i in range(0, len(ordered), chunk_size):
        chunk = ordered[i : i + chunk_size]
        outcomes = await asyncio.gather(*(single(key) for key in chunk), return_exceptions=True)
        for key, outcome in zip(chunk, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("resolver.item_failed", key=str(key), error=str(outcome))
                results[key] = Resolution(ResolutionStatus.FAILED, error=str(outcome) or type(outcome).__name__)
            elif outcome is None:
                results[key] = Resolution(ResolutionStatus.UNKNOWN, default)
            else:
                results[key] = Resolution(ResolutionStatus.RESOLVED, outcome)

        if i + chunk_size < len(ordered):
            await asyncio.sleep(chunk_delay)
    return results


def _metadata_from_token(token: Mapping[str, Any]) -> TokenMetadata:
    return TokenMetadata(
        symbol=token.get("symbol") or UNKNOWN_METADATA.symbol,
        name=token.get("name") or UNKNOWN_METADATA.name,
        image_url=token.get("logoURI") or None,
    )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class PriceResolver:
    """
    Uso:
        resolver = PriceResolver(jupiter, store, native_fallback_price=Decimal("150"))
        quotes = await resolver.resolve([mint_a, mint_b])

    El catálogo bulk de Jupiter es grande: se cachea catalog_ttl segundos.
    """

    def __init__(
        self,
        jupiter: JupiterClient,
        store: CacheStore,
        native_fallback_price: Decimal = Decimal("150"),
        chunk_size: int = 10,
        chunk_delay: float = 0.1,
        policy: RetryPolicy | None = None,
        catalog_ttl: float = 3600.0,
        catalog_retry_after: float = 30.0,
    ) -> None:
        self.jupiter = jupiter
        self.store = store
        self.native_fallback_price = native_fallback_price
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.policy = policy or RetryPolicy()
        self.catalog_ttl = catalog_ttl
        self.catalog_retry_after = catalog_retry_after
        self._catalog: dict[str, TokenMetadata] | None = None
        self._catalog_loaded_at: float = 0.0
        self._catalog_lock = asyncio.Lock()
        self._catalog_error: Exception | None = None
        self._catalog_failed_at: float = 0.0

    # -----------------------------------------------------------------------
    # Metadata
    # -----------------------------------------------------------------------

    async def _load_catalog(self) -> dict[str, TokenMetadata]:
        async with self._catalog_lock:
            fresh = time.monotonic() - self._catalog_loaded_at < self.catalog_ttl
            if self._catalog is not None and fresh:
                return self._catalog

            # Tras un fallo, quien llega dentro de catalog_retry_after no repite la descarga
            if (
                self._catalog_error is not None
                and time.monotonic() - self._catalog_failed_at < self.catalog_retry_after
            ):
                raise self._catalog_error

            try:
                tokens = await self.jupiter.get_token_list()
            except Exception as exc:
                self._catalog_error = exc
                self._catalog_failed_at = time.monotonic()
                logger.warning("resolver.catalog_failed", error=str(exc))
                raise
            self._catalog_error = None
            self._catalog = {
                token["address"]: _metadata_from_token(token)
                for token in tokens
                if token.get("address")
            }
            self._catalog_loaded_at = time.monotonic()
            logger.info("resolver.catalog_loaded", tokens=len(self._catalog))
            return self._catalog

    async def _single_metadata(self, mint: str) -> TokenMetadata:
        return _metadata_from_token(await self.jupiter.get_token(mint))

    async def resolve_metadata(self, mints: Iterable[str]) -> dict[str, MetadataResolution]:
        return await resolve_two_tier(
            mints,
            bulk=self._load_catalog,
            single=self._single_metadata,
            default=UNKNOWN_METADATA,
            chunk_size=self.chunk_size,
            chunk_delay=self.chunk_delay,
        )

    async def resolve_metadata_only(self, mints: Iterable[str]) -> dict[str, TokenMetadata]:
        """Metadata plana: resolved y unknown incluidos, failed omitidos."""
        resolutions = await self.resolve_metadata(mints)
        return {
            mint: resolution.value
            for mint, resolution in resolutions.items()
            if resolution.status != ResolutionStatus.FAILED and resolution.value is not None
        }

    # -----------------------------------------------------------------------
    # Precios
    # -----------------------------------------------------------------------

    async def resolve(self, mints: Iterable[str]) -> dict[str, PriceQuote]:
        """
        Precio + metadata por mint (siempre incluye SOL).
        Los mints sin precio en Jupiter no aparecen. Relanza si falla el proveedor.
        """
        ids = _unique([*mints, NATIVE_MINT])
        start = time.monotonic()
        try:
            prices, metadata = await asyncio.gather(
                with_retry(
                    lambda: self.jupiter.get_prices(ids),
                    max_attempts=self.policy.max_attempts,
                    base_delay=self.policy.base_delay,
                ),
                self.resolve_metadata_only(ids),
            )

            quotes: dict[str, PriceQuote] = {}
            for mint, info in prices.items():
                meta = metadata.get(mint) or UNKNOWN_METADATA
                if mint == NATIVE_MINT and meta == UNKNOWN_METADATA:
                    meta = NATIVE_METADATA
                quote = PriceQuote(
                    mint=mint,
                    price=info["price"],
                    symbol=meta.symbol,
                    name=meta.name,
                    image_url=meta.image_url,
                )
                await self.store.upsert_token_price(
                    mint=quote.mint,
                    symbol=quote.symbol,
                    name=quote.name,
                    price=quote.price,
                    source=PRICE_SOURCE,
                    price_change_24h=quote.change_24h,
                    market_cap=quote.market_cap,
                    image_url=quote.image_url,
                )
                quotes[mint] = quote
        except Exception as exc:
            await self.store.insert_fetch_log(
                wallet_address="system",
                operation="prices",
                status="error",
                response_time_ms=_elapsed_ms(start),
                error_details=str(exc) or type(exc).__name__,
            )
            logger.error("resolver.prices_failed", mints=len(ids), error=str(exc))
            raise

        await self.store.insert_fetch_log(
            wallet_address="system",
            operation="prices",
            status="success",
            response_time_ms=_elapsed_ms(start),
        )
        logger.debug("resolver.prices_resolved", requested=len(ids), priced=len(quotes))
        return quotes

    async def get_native_price(self) -> Decimal:
        """Precio USD de SOL. Nunca lanza."""
        try:
            prices = await self.jupiter.get_prices([NATIVE_MINT])
            price = prices.get(NATIVE_MINT, {}).get("price")
            if price is not None and price > 0:
                await self.store.upsert_token_price(
                    mint=NATIVE_MINT,
                    symbol=NATIVE_METADATA.symbol,
                    name=NATIVE_METADATA.name,
                    price=price,
                    source=PRICE_SOURCE,
                    image_url=NATIVE_METADATA.image_url,
                )
                return price
            logger.warning("resolver.native_price_missing")
        except Exception as exc:
            logger.warning("resolver.native_price_failed", error=str(exc))

        try:
            cached = await self.store.get_token_price(NATIVE_MINT)
        except Exception as exc:
            logger.error("resolver.native_price_cache_failed", error=str(exc))
            cached = None

        if cached is not None and Decimal(str(cached.price)) > 0:
            return Decimal(str(cached.price))
        return self.native_fallback_price

    async def refresh_stale_prices(self, max_age_minutes: int = 30) -> int:
        """Re-resuelve los precios más antiguos que max_age_minutes. Retorna cuántos se actualizaron."""
        stale = await self.store.get_stale_token_prices(max_age_minutes)
        if not stale:
            return 0

        mints = [price.mint for price in stale]
        try:
            quotes = await self.resolve(mints)
        except Exception as exc:
            logger.error("resolver.stale_refresh_failed", mints=len(mints), error=str(exc))
            return 0

        logger.info("resolver.stale_refreshed", requested=len(mints), refreshed=len(quotes))
        return len(quotes)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
