"""
Lectura de saldo nativo y holdings de tokens de una wallet.

Reglas:
- getBalance y getTokenAccountsByOwner (SPL + Token-2022) se lanzan en paralelo.
- Cada llamada pasa por cola → retry → fallback inline al RPC público.
- Se descartan cuentas con saldo 0; la cantidad viene ya ajustada por decimales
  (uiAmountString) y se conserva la precisión (decimals) de cada holding.
- Cada llamada deja un FetchLog (balance / tokens) con su latencia, también si falla.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

import structlog

from ingestion.addresses import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, validate_address
from ingestion.fetch_queue import FetchQueue
from ingestion.retry import RetryPolicy, with_fallback, with_retry
from ingestion.rpc_client import SolanaRpcClient
from services.cache_store import CacheStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LAMPORTS_PER_SOL = Decimal(10**9)


# ---------------------------------------------------------------------------
# Tipos
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenHolding:
    mint: str
    amount: Decimal     # ya ajustado por decimales
    decimals: int
    symbol: str | None = None
    name: str | None = None
    usd_value: Decimal | None = None

    def enrich(self, symbol: str, name: str, usd_value: Decimal) -> "TokenHolding":
        return replace(self, symbol=symbol, name=name, usd_value=usd_value)

    def to_json(self) -> dict[str, Any]:
        """Forma serializable para la columna JSON (Decimal → str)."""
        return {
            "mint": self.mint,
            "amount": str(self.amount),
            "decimals": self.decimals,
            "symbol": self.symbol,
            "name": self.name,
            "usd_value": str(self.usd_value) if self.usd_value is not None else None,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "TokenHolding":
        usd_value = data.get("usd_value")
        return cls(
            mint=data["mint"],
            amount=Decimal(str(data.get("amount", "0"))),
            decimals=int(data.get("decimals", 0)),
            symbol=data.get("symbol"),
            name=data.get("name"),
            usd_value=Decimal(str(usd_value)) if usd_value is not None else None,
        )


@dataclass
class WalletBalances:
    native_balance: Decimal
    holdings: list[TokenHolding] = field(default_factory=list)


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL


def parse_token_accounts(accounts: list[dict]) -> list[TokenHolding]:
    """Convierte cuentas jsonParsed en holdings, en el orden del proveedor, sin saldos 0."""
    holdings: list[TokenHolding] = []
    for account in accounts:
        info = (((account.get("account") or {}).get("data") or {}).get("parsed") or {}).get("info")
        if not info:
            continue
        token_amount = info.get("tokenAmount") or {}
        raw = token_amount.get("uiAmountString")
        if raw is None:
            raw = token_amount.get("uiAmount")
        try:
            amount = Decimal(str(raw)) if raw is not None else Decimal("0")
        except InvalidOperation:
            logger.warning("balance_fetcher.bad_amount", mint=info.get("mint"), raw=raw)
            continue
        if amount <= 0:
            continue
        holdings.append(
            TokenHolding(
                mint=info["mint"],
                amount=amount,
                decimals=int(token_amount.get("decimals", 0)),
            )
        )
    return holdings


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class BalanceFetcher:
    """
    Uso:
        fetcher = BalanceFetcher(primary, fallback, queue, store, RetryPolicy())
        balances = await fetcher.fetch(address)
    """

    def __init__(
        self,
        primary: SolanaRpcClient,
        fallback: SolanaRpcClient,
        queue: FetchQueue,
        store: CacheStore,
        policy: RetryPolicy,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.queue = queue
        self.store = store
        self.policy = policy

    async def fetch(self, address: str) -> WalletBalances:
        validate_address(address)
        # Se esperan las dos llamadas aunque una falle: ninguna queda suelta en la cola
        native, holdings = await asyncio.gather(
            self.fetch_native_balance(address),
            self.fetch_token_holdings(address),
            return_exceptions=True,
        )
        for outcome in (native, holdings):
            if isinstance(outcome, BaseException):
                raise outcome
        return WalletBalances(native_balance=native, holdings=holdings)

    async def fetch_native_balance(self, address: str) -> Decimal:
        lamports = await self._logged(
            address,
            "balance",
            lambda: self._provider_call(lambda rpc: rpc.get_balance(address), label="getBalance"),
        )
        return lamports_to_sol(lamports)

    async def fetch_token_holdings(self, address: str) -> list[TokenHolding]:
        async def token_accounts(rpc: SolanaRpcClient) -> list[dict]:
            spl, token_2022 = await asyncio.gather(
                rpc.get_token_accounts_by_owner(address, TOKEN_PROGRAM_ID),
                rpc.get_token_accounts_by_owner(address, TOKEN_2022_PROGRAM_ID),
            )
            return spl + token_2022

        accounts = await self._logged(
            address,
            "tokens",
            lambda: self._provider_call(token_accounts, label="getTokenAccountsByOwner"),
        )
        return parse_token_accounts(accounts)

    async def _provider_call(
        self,
        call: Callable[[SolanaRpcClient], Awaitable[T]],
        label: str,
    ) -> T:
        """Una entrada en la cola que agota reintentos, con fallback dentro de cada intento."""
        return await self.queue.submit(
            lambda: with_retry(
                lambda: with_fallback(
                    lambda: call(self.primary),
                    lambda: call(self.fallback),
                    label=label,
                ),
                max_attempts=self.policy.max_attempts,
                base_delay=self.policy.base_delay,
            )
        )

    async def _logged(self, address: str, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        start = time.monotonic()
        try:
            result = await call()
        except Exception as exc:
            await self.store.insert_fetch_log(
                wallet_address=address,
                operation=operation,
                status="error",
                response_time_ms=_elapsed_ms(start),
                error_details=str(exc) or type(exc).__name__,
            )
            logger.warning("balance_fetcher.failed", address=address, operation=operation, error=str(exc))
            raise
        await self.store.insert_fetch_log(
            wallet_address=address,
            operation=operation,
            status="success",
            response_time_ms=_elapsed_ms(start),
        )
        return result


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
