"""
Cálculo de PNL por wallet y por token a partir de snapshots y precios en caché.

Reglas críticas:
- NUNCA float: Decimal(str(valor)) para todo lo que venga de la BD o del JSON.
- Base de coste = snapshot MÁS ANTIGUO de cada wallet (o el más antiguo dentro
  de la ventana 24h/7d/30d). Depósitos posteriores al snapshot no tienen base:
  inflan el PNL aparente (limitación conocida, no se corrige aquí).
- initial_price = usd_value del snapshot / amount; current_price = último TokenPrice (0 si no hay).
- held = min(inicial, actual); sold = max(inicial − actual, 0); added = max(actual − inicial, 0)
  realized   = sold × (current_price − initial_price)
  unrealized = held × (current_price − initial_price) + added × current_price
- % = total / inicial × 100, y 0 si el valor inicial es 0.
- SOL nativo no es una posición de PNL (los totales USD cubren solo tokens).
- Solo lectura: nunca modifica wallets, precios ni snapshots.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog

from models.base import as_utc, utcnow
from services.cache_store import CacheStore

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
PCT_PRECISION = Decimal("0.01")

TIMEFRAMES: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


# ---------------------------------------------------------------------------
# Tipos de retorno
# ---------------------------------------------------------------------------


@dataclass
class TokenPNL:
    mint: str
    symbol: str
    initial_amount: Decimal
    current_amount: Decimal
    initial_price: Decimal
    current_price: Decimal
    initial_value: Decimal
    current_value: Decimal
    realized_pnl: Decimal
    unrealized_pnl: Decimal

    @property
    def total_pnl(self) -> Decimal:
        return self.realized_pnl + self.unrealized_pnl


@dataclass
class WalletPNL:
    wallet_address: str
    initial_value: Decimal
    current_value: Decimal
    realized_pnl: Decimal
    unrealized_pnl: Decimal
    first_snapshot_date: datetime
    tokens: list[TokenPNL] = field(default_factory=list)

    @property
    def total_pnl(self) -> Decimal:
        return self.realized_pnl + self.unrealized_pnl

    @property
    def total_pnl_percentage(self) -> Decimal:
        return pnl_percentage(self.total_pnl, self.initial_value)


@dataclass
class CombinedPNL:
    total_initial_value: Decimal
    total_current_value: Decimal
    total_realized_pnl: Decimal
    total_unrealized_pnl: Decimal
    wallet_count: int
    tokens: list[TokenPNL]
    top_gainers: list[TokenPNL]
    top_losers: list[TokenPNL]

    @property
    def total_pnl(self) -> Decimal:
        return self.total_realized_pnl + self.total_unrealized_pnl

    @property
    def total_pnl_percentage(self) -> Decimal:
        return pnl_percentage(self.total_pnl, self.total_initial_value)


# ---------------------------------------------------------------------------
# Funciones puras
# ---------------------------------------------------------------------------


def _dec(value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    return Decimal(str(value))


def pnl_percentage(total: Decimal, initial: Decimal) -> Decimal:
    """total / initial × 100 con 2 decimales; 0 si no hay valor inicial."""
    if initial == ZERO:
        return ZERO
    return (total / initial * 100).quantize(PCT_PRECISION, rounding=ROUND_HALF_UP)


def compute_token_pnl(
    mint: str,
    symbol: str,
    initial_amount: Decimal,
    initial_value: Decimal,
    current_amount: Decimal,
    current_price: Decimal,
) -> TokenPNL:
    initial_price = initial_value / initial_amount if initial_amount > ZERO else ZERO
    held = min(initial_amount, current_amount)
    sold = max(initial_amount - current_amount, ZERO)
    added = max(current_amount - initial_amount, ZERO)
    delta = current_price - initial_price

    return TokenPNL(
        mint=mint,
        symbol=symbol,
        initial_amount=initial_amount,
        current_amount=current_amount,
        initial_price=initial_price,
        current_price=current_price,
        initial_value=initial_value,
        current_value=current_amount * current_price,
        realized_pnl=sold * delta,
        unrealized_pnl=held * delta + added * current_price,
    )


def _positions(tokens: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Agrupa holdings por mint (amount y usd_value sumados), conservando el orden."""
    positions: dict[str, dict[str, Any]] = {}
    for token in tokens or []:
        mint = token.get("mint")
        if not mint:
            continue
        position = positions.setdefault(
            mint, {"symbol": token.get("symbol") or "Unknown", "amount": ZERO, "usd_value": ZERO}
        )
        position["amount"] += _dec(token.get("amount"))
        position["usd_value"] += _dec(token.get("usd_value"))
    return positions


def compute_wallet_pnl(
    wallet_address: str,
    basis_tokens: list[dict[str, Any]],
    basis_date: datetime,
    current_tokens: list[dict[str, Any]],
    prices: dict[str, Decimal],
) -> WalletPNL:
    """PNL de una wallet: unión de mints del snapshot base y de los holdings actuales."""
    basis = _positions(basis_tokens)
    current = _positions(current_tokens)

    tokens: list[TokenPNL] = []
    for mint in dict.fromkeys([*basis, *current]):
        before = basis.get(mint, {})
        now = current.get(mint, {})
        tokens.append(
            compute_token_pnl(
                mint=mint,
                symbol=now.get("symbol") or before.get("symbol") or "Unknown",
                initial_amount=before.get("amount", ZERO),
                initial_value=before.get("usd_value", ZERO),
                current_amount=now.get("amount", ZERO),
                current_price=prices.get(mint, ZERO),
            )
        )

    return WalletPNL(
        wallet_address=wallet_address,
        initial_value=sum((t.initial_value for t in tokens), ZERO),
        current_value=sum((t.current_value for t in tokens), ZERO),
        realized_pnl=sum((t.realized_pnl for t in tokens), ZERO),
        unrealized_pnl=sum((t.unrealized_pnl for t in tokens), ZERO),
        first_snapshot_date=basis_date,
        tokens=tokens,
    )


def combine_pnl(wallets: list[WalletPNL], limit: int = 10) -> CombinedPNL:
    """Suma wallets y agrega las filas de token por mint entre wallets."""
    by_mint: dict[str, TokenPNL] = {}
    for wallet in wallets:
        for token in wallet.tokens:
            agg = by_mint.get(token.mint)
            if agg is None:
                by_mint[token.mint] = replace(token)
                continue
            agg.initial_amount += token.initial_amount
            agg.current_amount += token.current_amount
            agg.initial_value += token.initial_value
            agg.current_value += token.current_value
            agg.realized_pnl += token.realized_pnl
            agg.unrealized_pnl += token.unrealized_pnl

    tokens = list(by_mint.values())
    for token in tokens:
        token.initial_price = token.initial_value / token.initial_amount if token.initial_amount > ZERO else ZERO

    return CombinedPNL(
        total_initial_value=sum((w.initial_value for w in wallets), ZERO),
        total_current_value=sum((w.current_value for w in wallets), ZERO),
        total_realized_pnl=sum((w.realized_pnl for w in wallets), ZERO),
        total_unrealized_pnl=sum((w.unrealized_pnl for w in wallets), ZERO),
        wallet_count=len(wallets),
        tokens=tokens,
        top_gainers=sorted(tokens, key=lambda t: t.total_pnl, reverse=True)[:limit],
        top_losers=sorted(tokens, key=lambda t: t.total_pnl)[:limit],
    )


def timeframe_start(period: str, now: datetime | None = None) -> datetime:
    """Inicio de la ventana 24h/7d/30d. ValueError si el periodo no existe."""
    if period not in TIMEFRAMES:
        raise ValueError(f"Periodo inválido: {period}. Usa {', '.join(TIMEFRAMES)}")
    return (now or utcnow()) - TIMEFRAMES[period]


# ---------------------------------------------------------------------------
# Servicio
# ---------------------------------------------------------------------------


class PNLService:
    """
    Lee snapshots, wallets y precios del CacheStore y aplica las funciones puras.
    Las wallets sin snapshot base o sin un fetch correcto no entran en el PNL.
    """

    def __init__(self, store: CacheStore) -> None:
        self.store = store

    async def _prices(self) -> dict[str, Decimal]:
        return {p.mint: _dec(p.price) for p in await self.store.get_all_token_prices()}

    async def wallet_pnl(self, wallet_address: str, since: datetime | None = None) -> WalletPNL | None:
        snapshots = await self.store.get_earliest_snapshots(since=since, wallet_address=wallet_address)
        basis = snapshots.get(wallet_address)
        record = await self.store.get_wallet_balance(wallet_address)
        if basis is None or record is None or record.fetch_status != "success":
            return None
        return compute_wallet_pnl(
            wallet_address,
            basis.tokens,
            as_utc(basis.snapshot_timestamp),
            record.tokens,
            await self._prices(),
        )

    async def all_wallet_pnl(self, since: datetime | None = None) -> list[WalletPNL]:
        basis_by_wallet = await self.store.get_earliest_snapshots(since=since)
        if not basis_by_wallet:
            return []
        prices = await self._prices()
        records = await self.store.get_wallet_balances(list(basis_by_wallet))

        results: list[WalletPNL] = []
        for record in records:
            if record.fetch_status != "success":
                continue
            basis = basis_by_wallet[record.wallet_address]
            results.append(
                compute_wallet_pnl(
                    record.wallet_address,
                    basis.tokens,
                    as_utc(basis.snapshot_timestamp),
                    record.tokens,
                    prices,
                )
            )
        return results

    async def combined_pnl(self, limit: int = 10, since: datetime | None = None) -> CombinedPNL:
        wallets = await self.all_wallet_pnl(since=since)
        combined = combine_pnl(wallets, limit=limit)
        logger.debug(
            "pnl.combined",
            wallets=combined.wallet_count,
            tokens=len(combined.tokens),
            total_pnl=str(combined.total_pnl),
        )
        return combined

    async def timeframe_pnl(self, period: str, limit: int = 10) -> CombinedPNL:
        return await self.combined_pnl(limit=limit, since=timeframe_start(period))

    async def wallet_timeframe_pnl(self, wallet_address: str, period: str) -> WalletPNL | None:
        return await self.wallet_pnl(wallet_address, since=timeframe_start(period))
