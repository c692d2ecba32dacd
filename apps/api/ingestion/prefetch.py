"""
CLI de prefetch: llena la caché sin pasar por la API.

Arrancar con:
    python -m ingestion.prefetch run [--limit N] [--batch-size N] [--force-refresh]
    python -m ingestion.prefetch health
    python -m ingestion.prefetch refresh-prices
    python -m ingestion.prefetch snapshot

Sin --force-refresh solo se procesan wallets sin datos, con error o más
antiguas que PREFETCH_INTERVAL_MINUTES: relanzar tras un corte reanuda el trabajo.
"""

import argparse
import asyncio
import json
import sys

import structlog

from core.config import Settings, settings
from core.database import engine as db_engine
from core.logging import configure_logging
from ingestion.address_source import load_wallets
from ingestion.engine import ConfigurationError, IngestionEngine
from ingestion.orchestrator import BatchResult
from services.cache_store import CacheStore
from services.snapshots import create_snapshots

logger = structlog.get_logger(__name__)


async def prefetch_wallets(
    engine: IngestionEngine,
    config: Settings,
    limit: int | None = None,
    batch_size: int | None = None,
    force_refresh: bool = False,
) -> BatchResult:
    """Carga el CSV de wallets y procesa las pendientes."""
    wallets = load_wallets(config.WALLETS_CSV_PATH)
    if limit is not None:
        wallets = wallets[:limit]
    return await engine.run_pending(
        wallets,
        batch_size=batch_size,
        max_age_minutes=config.PREFETCH_INTERVAL_MINUTES,
        force_refresh=force_refresh,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m ingestion.prefetch", description="Prefetch de la caché de wallets")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Procesa las wallets del CSV")
    run.add_argument("--limit", type=int, default=None, help="Solo las N primeras wallets")
    run.add_argument("--batch-size", type=int, default=None, help="Wallets por chunk")
    run.add_argument("--force-refresh", action="store_true", help="Ignora la caché y procesa todas")

    commands.add_parser("health", help="Comprueba BD, RPC y Jupiter")
    commands.add_parser("refresh-prices", help="Refresca precios caducados")
    commands.add_parser("snapshot", help="Snapshot manual de todas las wallets correctas")
    return parser


async def _run(args: argparse.Namespace) -> int:
    store = CacheStore(db_engine)
    try:
        if settings.DB_AUTO_CREATE:
            await store.create_schema()
        return await _dispatch(args, store)
    finally:
        await db_engine.dispose()


async def _dispatch(args: argparse.Namespace, store: CacheStore) -> int:
    if args.command == "snapshot":
        stats = await create_snapshots(store, snapshot_type="manual")
        print(json.dumps({"created": stats.created, "skipped": stats.skipped, "errors": stats.errors}))
        return 0 if not stats.errors else 1

    try:
        engine = IngestionEngine.from_settings(settings, store)
    except ConfigurationError as exc:
        logger.error("prefetch.config_error", error=str(exc))
        return 2

    async with engine:
        if args.command == "run":
            result = await prefetch_wallets(
                engine,
                settings,
                limit=args.limit,
                batch_size=args.batch_size,
                force_refresh=args.force_refresh,
            )
            print(json.dumps(result.to_dict()))
            return 0 if result.failed == 0 else 1

        if args.command == "health":
            db_health = await store.health_check()
            engine_health = await engine.health_check()
            print(json.dumps({"database": db_health, "ingestion": engine_health}, default=str))
            healthy = db_health["status"] == "healthy" and engine_health["status"] == "healthy"
            return 0 if healthy else 1

        refreshed = await engine.refresh_stale_prices()
        print(json.dumps({"refreshed": refreshed}))
        return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
