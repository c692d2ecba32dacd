"""
Proceso independiente del scheduler APScheduler.
Mantiene la caché caliente sin depender de la API.

Jobs:
- prefetch       cada PREFETCH_INTERVAL_MINUTES (solo wallets pendientes o caducadas)
- refresh_prices cada PRICE_REFRESH_INTERVAL_MINUTES (precios con más de STALE_PRICE_MINUTES)
- snapshot       según SNAPSHOT_CRON (base de coste del PNL)

Arrancar con: python -m ingestion.scheduler
"""

import asyncio
import signal

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core.config import Settings, settings
from core.database import engine as db_engine
from core.logging import configure_logging
from ingestion.engine import IngestionEngine
from ingestion.prefetch import prefetch_wallets
from services.cache_store import CacheStore
from services.snapshots import create_snapshots

logger = structlog.get_logger(__name__)


def build_scheduler(engine: IngestionEngine, store: CacheStore, config: Settings) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,          # agrupar ejecuciones perdidas en una
            "max_instances": 1,        # nunca dos lotes solapados
            "misfire_grace_time": 60 * 5,
        },
    )

    async def prefetch_job() -> None:
        try:
            result = await prefetch_wallets(engine, config)
        except Exception as exc:
            logger.error("scheduler.prefetch_failed", error=str(exc), exc_info=exc)
            return
        logger.info("scheduler.prefetch_done", **result.to_dict())

    async def refresh_prices_job() -> None:
        try:
            refreshed = await engine.refresh_stale_prices(config.STALE_PRICE_MINUTES)
        except Exception as exc:
            logger.error("scheduler.refresh_prices_failed", error=str(exc))
            return
        logger.info("scheduler.refresh_prices_done", refreshed=refreshed)

    async def snapshot_job() -> None:
        try:
            stats = await create_snapshots(store, snapshot_type="scheduled")
        except Exception as exc:
            logger.error("scheduler.snapshot_failed", error=str(exc))
            return
        logger.info("scheduler.snapshot_done", created=stats.created, skipped=stats.skipped)

    scheduler.add_job(
        prefetch_job,
        IntervalTrigger(minutes=config.PREFETCH_INTERVAL_MINUTES),
        id="prefetch",
        name="Prefetch de wallets",
    )
    scheduler.add_job(
        refresh_prices_job,
        IntervalTrigger(minutes=config.PRICE_REFRESH_INTERVAL_MINUTES),
        id="refresh_prices",
        name="Refresco de precios caducados",
    )
    scheduler.add_job(
        snapshot_job,
        CronTrigger.from_crontab(config.SNAPSHOT_CRON, timezone="UTC"),
        id="snapshot",
        name="Snapshot programado",
    )
    return scheduler


async def run() -> None:
    store = CacheStore(db_engine)
    if settings.DB_AUTO_CREATE:
        await store.create_schema()

    engine = IngestionEngine.from_settings(settings, store)
    scheduler = build_scheduler(engine, store, settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    scheduler.start()
    logger.info(
        "scheduler.started",
        prefetch_minutes=settings.PREFETCH_INTERVAL_MINUTES,
        price_refresh_minutes=settings.PRICE_REFRESH_INTERVAL_MINUTES,
        snapshot_cron=settings.SNAPSHOT_CRON,
        env=settings.APP_ENV,
    )
    try:
        await stop.wait()
    finally:
        scheduler.shutdown(wait=False)
        await engine.close()
        await db_engine.dispose()
        logger.info("scheduler.stopped")


def main() -> None:
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    asyncio.run(run())


if __name__ == "__main__":
    main()
