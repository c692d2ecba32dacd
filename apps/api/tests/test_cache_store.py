"""
Tests del CacheStore y de la creación de snapshots sobre un SQLite temporal.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

import services.cache_store as cache_store_module
from conftest import MINT_M1, MINT_M2, WALLET_A, WALLET_B, holding_json
from ingestion.addresses import NATIVE_MINT
from models.base import as_utc, utcnow
from services.snapshots import create_snapshots

# ---------------------------------------------------------------------------
# wallet_balances
# ---------------------------------------------------------------------------


async def test_upsert_keeps_single_row_per_address(store, sample_tokens):
    await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("1"), [], Decimal("0"), "success")
    await store.upsert_wallet_balance(WALLET_A, "g2", Decimal("2.5"), sample_tokens, Decimal("50"), "success")

    rows = await store.get_all_wallet_balances()
    assert len(rows) == 1
    assert rows[0].wallet_id == "g2"
    assert Decimal(str(rows[0].sol_balance)) == Decimal("2.5")
    assert rows[0].tokens == sample_tokens


async def test_retry_count_tracks_consecutive_errors(store):
    for _ in range(3):
        await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("0"), [], Decimal("0"), "error", "boom")
    assert (await store.get_wallet_balance(WALLET_A)).retry_count == 3

    await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("0"), [], Decimal("0"), "pending")
    assert (await store.get_wallet_balance(WALLET_A)).retry_count == 3

    await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("1"), [], Decimal("0"), "success")
    record = await store.get_wallet_balance(WALLET_A)
    assert record.retry_count == 0
    assert record.error_message is None


async def test_wallets_ordered_by_value_with_pagination(store):
    await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("0"), [], Decimal("10"), "success")
    await store.upsert_wallet_balance(WALLET_B, "g1", Decimal("0"), [], Decimal("900"), "success")

    assert [w.wallet_address for w in await store.get_all_wallet_balances()] == [WALLET_B, WALLET_A]
    assert [w.wallet_address for w in await store.get_all_wallet_balances(limit=1, offset=1)] == [WALLET_A]


async def test_get_wallet_balances_subset(store):
    await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("0"), [], Decimal("0"), "success")

    assert [w.wallet_address for w in await store.get_wallet_balances([WALLET_A, WALLET_B])] == [WALLET_A]
    assert await store.get_wallet_balances([]) == []


async def test_token_holders_only_successful_wallets(store):
    await store.upsert_wallet_balance(
        WALLET_A, "g1", Decimal("0"), [holding_json(MINT_M1, "5", "5")], Decimal("5"), "success"
    )
    await store.upsert_wallet_balance(
        WALLET_B, "g2", Decimal("0"), [holding_json(MINT_M1, "50", "50")], Decimal("50"), "success"
    )
    await store.upsert_wallet_balance(
        "not-a-wallet", "g3", Decimal("0"), [holding_json(MINT_M1, "500", "500")], Decimal("0"), "error"
    )

    holders = await store.get_token_holders(MINT_M1)

    assert [(h["wallet_address"], h["amount"]) for h in holders] == [(WALLET_B, "50"), (WALLET_A, "5")]
    assert await store.get_token_holders(MINT_M2) == []


# ---------------------------------------------------------------------------
# token_prices
# ---------------------------------------------------------------------------


async def test_token_price_last_writer_wins(store):
    await store.upsert_token_price(MINT_M1, "USDC", "USD Coin", Decimal("1.0001"), source="jupiter")
    await store.upsert_token_price(MINT_M1, "USDC", "USD Coin", Decimal("0.9998"), source="jupiter")

    prices = await store.get_all_token_prices()
    assert len(prices) == 1
    assert Decimal(str(prices[0].price)) == Decimal("0.9998")


async def test_stale_token_prices(store, monkeypatch):
    old = utcnow() - timedelta(hours=2)
    monkeypatch.setattr(cache_store_module, "utcnow", lambda: old)
    await store.upsert_token_price(MINT_M2, "BONK", "Bonk", Decimal("0.00002"), source="jupiter")
    monkeypatch.undo()
    await store.upsert_token_price(MINT_M1, "USDC", "USD Coin", Decimal("1"), source="jupiter")

    stale = await store.get_stale_token_prices(30)

    assert [p.mint for p in stale] == [MINT_M2]


# ---------------------------------------------------------------------------
# fetch_logs
# ---------------------------------------------------------------------------


async def test_fetch_logs_newest_first_and_error_filter(store):
    await store.insert_fetch_log(WALLET_A, "balance", "success", 120)
    await store.insert_fetch_log(WALLET_A, "tokens", "error", 3000, error_details="timeout")
    await store.insert_fetch_log("system", "prices", "success", 80)

    recent = await store.get_recent_fetch_logs()
    errors = await store.get_error_logs()

    assert [log.operation for log in recent] == ["prices", "tokens", "balance"]
    assert [log.error_details for log in errors] == ["timeout"]
    assert len(await store.get_recent_fetch_logs(limit=2)) == 2


# ---------------------------------------------------------------------------
# portfolio_snapshots
# ---------------------------------------------------------------------------


async def test_snapshots_history_and_earliest(store, sample_tokens):
    now = utcnow()
    for days in (10, 5, 1):
        await store.insert_portfolio_snapshot(
            WALLET_A, Decimal("1"), sample_tokens, Decimal(days), "scheduled",
            snapshot_timestamp=now - timedelta(days=days),
        )
    await store.insert_portfolio_snapshot(
        WALLET_B, Decimal("1"), [], Decimal("7"), "manual", snapshot_timestamp=now - timedelta(days=2)
    )

    history = await store.get_portfolio_snapshots(WALLET_A)
    assert [int(Decimal(str(s.total_usd_value))) for s in history] == [1, 5, 10]

    earliest = await store.get_earliest_snapshots()
    assert int(Decimal(str(earliest[WALLET_A].total_usd_value))) == 10
    assert set(earliest) == {WALLET_A, WALLET_B}

    in_window = await store.get_earliest_snapshots(since=now - timedelta(days=7), wallet_address=WALLET_A)
    assert int(Decimal(str(in_window[WALLET_A].total_usd_value))) == 5


async def test_create_snapshots_only_successful_wallets(store, sample_tokens):
    await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("2.5"), sample_tokens, Decimal("50"), "success")
    await store.upsert_wallet_balance(WALLET_B, "g1", Decimal("0"), [], Decimal("0"), "error", "boom")

    stats = await create_snapshots(store, snapshot_type="scheduled")

    assert (stats.created, stats.skipped, stats.errors) == (1, 1, [])
    snapshots = await store.get_portfolio_snapshots(WALLET_A)
    assert len(snapshots) == 1
    assert snapshots[0].snapshot_type == "scheduled"
    assert Decimal(str(snapshots[0].total_usd_value)) == Decimal("50")
    assert await store.get_portfolio_snapshots(WALLET_B) == []


async def test_create_snapshots_rejects_unknown_type(store):
    with pytest.raises(ValueError):
        await create_snapshots(store, snapshot_type="hourly")


# ---------------------------------------------------------------------------
# Métricas, agregados y salud
# ---------------------------------------------------------------------------


async def test_system_metrics_upsert(store):
    await store.upsert_system_metric("last_batch_failed", "3")
    await store.upsert_system_metric("last_batch_failed", "0")

    assert await store.get_all_system_metrics() == {"last_batch_failed": "0"}


async def test_portfolio_overview(store):
    await store.upsert_wallet_balance(WALLET_A, "g1", Decimal("2.5"), [], Decimal("50.10"), "success")
    await store.upsert_wallet_balance(WALLET_B, "g1", Decimal("1.25"), [], Decimal("0.20"), "success")
    await store.upsert_wallet_balance("not-a-wallet", "g2", Decimal("0"), [], Decimal("0"), "error", "invalid")

    overview = await store.get_portfolio_overview()

    assert overview["total_wallets"] == 3
    assert overview["successful_wallets"] == 2
    assert overview["failed_wallets"] == 1
    assert overview["pending_wallets"] == 0
    assert overview["total_sol_balance"] == Decimal("3.75")
    assert overview["total_usd_value"] == Decimal("50.30")
    assert overview["last_updated"] is not None
    assert as_utc(overview["last_updated"]) <= utcnow()


async def test_portfolio_overview_empty(store):
    overview = await store.get_portfolio_overview()

    assert overview["total_wallets"] == 0
    assert overview["total_usd_value"] == Decimal("0")
    assert overview["last_updated"] is None


async def test_health_check(store):
    health = await store.health_check()

    assert health["status"] == "healthy"
    assert health["dialect"] == "sqlite"


async def test_native_price_row_roundtrip(store):
    await store.upsert_token_price(
        NATIVE_MINT, "SOL", "Solana", Decimal("142.5"), source="jupiter", price_change_24h=Decimal("-1.25")
    )
    row = await store.get_token_price(NATIVE_MINT)

    assert row.symbol == "SOL"
    assert Decimal(str(row.price_change_24h)) == Decimal("-1.25")
