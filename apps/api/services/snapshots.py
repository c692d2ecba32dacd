"""
Creación de portfolio_snapshots a partir de las wallets en caché.
Solo se capturan wallets con fetch_status = success; todas comparten timestamp.
"""

from dataclasses import dataclass, field
from decimal import Decimal

import structlog

from models.base import utcnow
from models.portfolio_snapshot import SNAPSHOT_TYPES
from services.cache_store import CacheStore

logger = structlog.get_logger(__name__)


@dataclass
class SnapshotStats:
    created: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


async def create_snapshots(store: CacheStore, snapshot_type: str = "manual") -> SnapshotStats:
    if snapshot_type not in SNAPSHOT_TYPES:
        raise ValueError(f"snapshot_type debe ser uno de: {SNAPSHOT_TYPES}")

    stats = SnapshotStats()
    taken_at = utcnow()
    for wallet in await store.get_all_wallet_balances():
        if wallet.fetch_status != "success":
            stats.skipped += 1
            continue
        tokens = wallet.tokens or []
        total = sum(
            (Decimal(str(t["usd_value"])) for t in tokens if t.get("usd_value") is not None),
            Decimal("0"),
        )
        try:
            await store.insert_portfolio_snapshot(
                wallet_address=wallet.wallet_address,
                sol_balance=Decimal(str(wallet.sol_balance)),
                tokens=tokens,
                total_usd_value=total,
                snapshot_type=snapshot_type,
                snapshot_timestamp=taken_at,
            )
            stats.created += 1
        except Exception as exc:
            stats.errors.append(f"{wallet.wallet_address}: {exc}")
            logger.error("snapshots.insert_failed", address=wallet.wallet_address, error=str(exc))

    logger.info(
        "snapshots.created",
        snapshot_type=snapshot_type,
        created=stats.created,
        skipped=stats.skipped,
        errors=len(stats.errors),
    )
    return stats
