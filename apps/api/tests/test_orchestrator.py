"""
Tests del orquestador de lotes.
Fetcher y resolver son AsyncMock (salvo en la repetición de lote, que usa
un PriceResolver real sobre un Jupiter simulado); la caché es un SQLite temporal
para comprobar lo que se persiste por wallet.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import MINT_M1, MINT_M2, WALLET_A, WALLET_B
from ingestion.address_source import WalletEntry
from ingestion.addresses import NATIVE_MINT, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from ingestion.balance_fetcher import BalanceFetcher, TokenHolding, WalletBalances
from ingestion.jupiter_client import JupiterClient
from ingestion.orchestrator import BatchOrchestrator, BatchResult, enrich_holdings, select_pending
from ingestion.price_resolver import PriceQuote, PriceResolver, Resolution, ResolutionStatus, TokenMetadata
from ingestion.retry import RetryPolicy
from ingestion.rpc_client import RpcError
from models.wallet_balance import WalletBalance

# Doce claves públicas conocidas (válidas como direcciones)
ADDRESSES = [
    WALLET_A,
    WALLET_B,
    MINT_M1,
    MINT_M2,
    NATIVE_MINT,
    TOKEN_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    "11111111111111111111111111111111",
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL",
    "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr",
    "Vote111111111111111111111111111111111111111",
    "Stake11111111111111111111111111111111111111",
]

M1_META = TokenMetadata(symbol="M1", name="Token One")

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def entries(addresses: list[str], group: str = "g1") -> list[WalletEntry]:
    return [WalletEntry(wallet_id=group, address=a) for a in addresses]


def make_fetcher(fetch) -> AsyncMock:
    fetcher = AsyncMock(spec=BalanceFetcher)
    fetcher.fetch.side_effect = fetch
    return fetcher


def make_resolver(metadata: dict | None = None, quotes: dict | None = None) -> AsyncMock:
    resolver = AsyncMock(spec=PriceResolver)
    resolver.resolve_metadata.return_value = {
        mint: Resolution(ResolutionStatus.RESOLVED, meta) for mint, meta in (metadata or {}).items()
    }
    resolver.resolve.return_value = quotes or {}
    return resolver


def empty_wallet(address: str) -> WalletBalances:
    return WalletBalances(native_balance=Decimal("1"), holdings=[])


def m1_wallet(address: str) -> WalletBalances:
    return WalletBalances(
        native_balance=Decimal("2.5"),
        holdings=[TokenHolding(mint=MINT_M1, amount=Decimal("100"), decimals=6)],
    )


M1_QUOTE = PriceQuote(mint=MINT_M1, price=Decimal("0.50"), symbol="M1", name="Token One")


# ---------------------------------------------------------------------------
# Lote
# ---------------------------------------------------------------------------


async def test_batch_runs_chunks_in_sequence_and_counts_failures(store, monkeypatch):
    events: list[str] = []
    failing = ADDRESSES[10]

    async def record_pause(_delay):
        events.append("pause")

    sleep = AsyncMock(side_effect=record_pause)
    monkeypatch.setattr(asyncio, "sleep", sleep)

    async def fetch(address):
        events.append(address)
        if address == failing:
            raise RpcError("helius", -32000, "upstream timeout")
        return empty_wallet(address)

    orchestrator = BatchOrchestrator(make_fetcher(fetch), make_resolver(), store, batch_delay=2.0)

    result = await orchestrator.run_batch(entries(ADDRESSES), batch_size=5)

    assert result.successful == 11
    assert result.failed == 1
    assert result.total == 12
    assert result.errors == [f"{failing}: RPC helius error -32000: upstream timeout"]
    assert events == [*ADDRESSES[:5], "pause", *ADDRESSES[5:10], "pause", *ADDRESSES[10:]]
    assert all(c.args == (2.0,) for c in sleep.await_args_list)
    assert result.finished_at is not None


async def test_wallet_value_counts_tokens_only(store):
    resolver = make_resolver(metadata={MINT_M1: M1_META}, quotes={MINT_M1: M1_QUOTE})
    orchestrator = BatchOrchestrator(make_fetcher(m1_wallet), resolver, store)

    result = await orchestrator.run_batch(entries([WALLET_A]))

    assert result.successful == 1
    record = await store.get_wallet_balance(WALLET_A)
    assert record.fetch_status == "success"
    assert Decimal(str(record.sol_balance)) == Decimal("2.5")
    assert Decimal(str(record.total_usd_value)) == Decimal("50.0")
    assert record.tokens == [
        {
            "mint": MINT_M1,
            "amount": "100",
            "decimals": 6,
            "symbol": "M1",
            "name": "Token One",
            "usd_value": "50.00",
        }
    ]
    assert record.retry_count == 0


async def test_wallet_without_tokens_skips_price_resolution(store):
    resolver = make_resolver()
    orchestrator = BatchOrchestrator(make_fetcher(empty_wallet), resolver, store)

    await orchestrator.run_batch(entries([WALLET_A]))

    resolver.resolve.assert_not_called()
    resolver.resolve_metadata.assert_not_called()
    assert Decimal(str((await store.get_wallet_balance(WALLET_A)).total_usd_value)) == 0


def _columns(row) -> dict:
    return {c.name: getattr(row, c.key) for c in row.__table__.columns if c.name != "last_updated"}


async def test_rerun_is_idempotent(store):
    jupiter = AsyncMock(spec=JupiterClient)
    jupiter.get_prices.return_value = {
        MINT_M1: {"price": Decimal("0.50"), "extra": {}},
        NATIVE_MINT: {"price": Decimal("150"), "extra": {}},
    }
    jupiter.get_token_list.return_value = [{"address": MINT_M1, "symbol": "M1", "name": "Token One"}]
    resolver = PriceResolver(jupiter, store, policy=RetryPolicy(max_attempts=1, base_delay=0.0))
    orchestrator = BatchOrchestrator(make_fetcher(m1_wallet), resolver, store)

    await orchestrator.run_batch(entries([WALLET_A, WALLET_B]))
    first_wallets = {r.wallet_address: _columns(r) for r in await store.get_all_wallet_balances()}
    first_prices = {p.mint: _columns(p) for p in await store.get_all_token_prices()}
    await orchestrator.run_batch(entries([WALLET_A, WALLET_B]))
    second_wallets = {r.wallet_address: _columns(r) for r in await store.get_all_wallet_balances()}
    second_prices = {p.mint: _columns(p) for p in await store.get_all_token_prices()}

    assert set(first_wallets) == {WALLET_A, WALLET_B}
    assert first_wallets == second_wallets
    assert first_wallets[WALLET_A]["fetch_status"] == "success"
    assert first_wallets[WALLET_A]["retry_count"] == 0
    assert set(first_prices) == {MINT_M1, NATIVE_MINT}
    assert first_prices == second_prices
    assert first_prices[NATIVE_MINT]["symbol"] == "SOL"


async def test_invalid_address_is_logged_and_persisted(store):
    fetcher = make_fetcher(empty_wallet)
    orchestrator = BatchOrchestrator(fetcher, make_resolver(), store)

    result = await orchestrator.run_batch(entries(["not-a-wallet", WALLET_A]))

    assert result.successful == 1
    assert result.failed == 1
    assert result.errors == ["not-a-wallet: Invalid Solana address: 'not-a-wallet'"]
    fetcher.fetch.assert_awaited_once_with(WALLET_A)

    record = await store.get_wallet_balance("not-a-wallet")
    assert record.fetch_status == "error"
    assert "Invalid Solana address" in record.error_message
    logs = await store.get_error_logs()
    assert [(log.wallet_address, log.operation, log.response_time_ms) for log in logs] == [
        ("not-a-wallet", "validate", 0)
    ]


async def test_consecutive_failures_increment_retry_count(store):
    healthy = {"value": False}

    async def fetch(address):
        if not healthy["value"]:
            raise RpcError("helius", -32000, "down")
        return empty_wallet(address)

    orchestrator = BatchOrchestrator(make_fetcher(fetch), make_resolver(), store)

    await orchestrator.run_batch(entries([WALLET_A]))
    await orchestrator.run_batch(entries([WALLET_A]))
    record = await store.get_wallet_balance(WALLET_A)
    assert record.fetch_status == "error"
    assert record.retry_count == 2
    assert Decimal(str(record.total_usd_value)) == 0

    healthy["value"] = True
    await orchestrator.run_batch(entries([WALLET_A]))
    record = await store.get_wallet_balance(WALLET_A)
    assert record.fetch_status == "success"
    assert record.retry_count == 0
    assert record.error_message is None


async def test_pipeline_timeout_marks_wallet_failed(store):
    async def hang(address):
        await asyncio.Event().wait()

    orchestrator = BatchOrchestrator(make_fetcher(hang), make_resolver(), store, pipeline_timeout=0.05)

    result = await orchestrator.run_batch(entries([WALLET_A]))

    assert result.failed == 1
    assert result.errors == [f"{WALLET_A}: timed out after 0.05s"]
    record = await store.get_wallet_balance(WALLET_A)
    assert record.fetch_status == "error"
    assert record.error_message == "timed out after 0.05s"
    logs = await store.get_error_logs()
    assert [(log.wallet_address, log.operation, log.response_time_ms, log.error_details) for log in logs] == [
        (WALLET_A, "pipeline", 50, "timed out after 0.05s")
    ]


async def test_cancelled_wallet_counts_as_failure(store):
    async def fetch(address):
        if address == WALLET_B:
            raise asyncio.CancelledError()
        return empty_wallet(address)

    orchestrator = BatchOrchestrator(make_fetcher(fetch), make_resolver(), store, pipeline_timeout=None)

    result = await orchestrator.run_batch(entries([WALLET_A, WALLET_B]))

    assert result.successful == 1
    assert result.failed == 1
    assert result.errors == [f"{WALLET_B}: CancelledError"]


async def test_batch_metrics_are_recorded(store):
    orchestrator = BatchOrchestrator(make_fetcher(empty_wallet), make_resolver(), store)

    await orchestrator.run_batch(entries([WALLET_A, WALLET_B]))

    metrics = await store.get_all_system_metrics()
    assert metrics["last_batch_successful"] == "2"
    assert metrics["last_batch_failed"] == "0"
    assert "last_batch_at" in metrics


async def test_batch_size_must_be_positive(store):
    orchestrator = BatchOrchestrator(make_fetcher(empty_wallet), make_resolver(), store)
    with pytest.raises(ValueError):
        await orchestrator.run_batch(entries([WALLET_A]), batch_size=0)


def test_batch_result_to_dict():
    started = datetime(2024, 1, 1, tzinfo=timezone.utc)
    result = BatchResult(successful=3, failed=1, errors=["x: boom"], started_at=started)
    result.finished_at = started + timedelta(seconds=1.5)

    assert result.to_dict() == {"successful": 3, "failed": 1, "errors": ["x: boom"], "duration_ms": 1500}


# ---------------------------------------------------------------------------
# Enriquecimiento
# ---------------------------------------------------------------------------


def test_enrich_prefers_metadata_then_quote_then_unknown():
    holdings = [
        TokenHolding(mint=MINT_M1, amount=Decimal("10"), decimals=6),
        TokenHolding(mint=MINT_M2, amount=Decimal("3"), decimals=5),
        TokenHolding(mint=NATIVE_MINT, amount=Decimal("1"), decimals=9),
    ]
    quotes = {
        MINT_M1: PriceQuote(MINT_M1, Decimal("2"), "QUOTE", "Quote Name"),
        MINT_M2: PriceQuote(MINT_M2, Decimal("0.5"), "BONK", "Bonk"),
    }

    enriched = enrich_holdings(holdings, {MINT_M1: M1_META}, quotes)

    assert [(h.symbol, h.name, h.usd_value) for h in enriched] == [
        ("M1", "Token One", Decimal("20")),
        ("BONK", "Bonk", Decimal("1.5")),
        ("Unknown", "Unknown Token", Decimal("0")),
    ]


# ---------------------------------------------------------------------------
# Reanudación
# ---------------------------------------------------------------------------


def _record(address: str, status: str, age_minutes: int, now: datetime) -> WalletBalance:
    return WalletBalance(
        wallet_address=address,
        wallet_id="g1",
        sol_balance=Decimal("0"),
        tokens=[],
        total_usd_value=Decimal("0"),
        fetch_status=status,
        last_updated=now - timedelta(minutes=age_minutes),
    )


def test_select_pending_skips_fresh_successes():
    now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    wallets = entries(ADDRESSES[:4])
    records = {
        ADDRESSES[0]: _record(ADDRESSES[0], "success", 5, now),
        ADDRESSES[1]: _record(ADDRESSES[1], "success", 30, now),
        ADDRESSES[2]: _record(ADDRESSES[2], "error", 1, now),
    }

    pending = select_pending(wallets, records, max_age_minutes=10, now=now)

    assert [w.address for w in pending] == ADDRESSES[1:4]
    assert select_pending(wallets, records, max_age_minutes=10, force_refresh=True, now=now) == wallets


async def test_run_pending_only_processes_missing_or_failed(store):
    await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("1"), [], Decimal("0"), "success")
    await store.upsert_wallet_balance(WALLET_B, "g1", Decimal("0"), [], Decimal("0"), "error", "down")
    fetcher = make_fetcher(empty_wallet)
    orchestrator = BatchOrchestrator(fetcher, make_resolver(), store)

    result = await orchestrator.run_pending(entries([WALLET_A, WALLET_B]), max_age_minutes=10)

    assert result.successful == 1
    fetcher.fetch.assert_awaited_once_with(WALLET_B)
