"""
Router: /api/v1/portfolio
GET /overview                  → totales de la caché + resumen de PNL
GET /status                    → salud de BD e ingesta, frescura de datos, stats del CSV
GET /metrics                   → rendimiento de los últimos fetch y métricas del último lote
GET /pnl                       → PNL combinado con top gainers / losers
GET /pnl/timeframe/{period}    → PNL con base en la ventana 24h | 7d | 30d

Todos leen de la caché; ninguno llama a los proveedores salvo el health check de /status.
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status

from core.config import settings
from core.dependencies import get_optional_engine, get_store
from core.responses import ok
from ingestion.address_source import AddressSourceError, csv_stats
from ingestion.engine import IngestionEngine
from models.base import as_utc
from routers import serializers
from services.cache_store import CacheStore
from services.pnl_service import TIMEFRAMES, PNLService

router = APIRouter()

# Datos más antiguos que esto se consideran no frescos en /status
FRESHNESS_MINUTES = 10


@router.get("/overview")
async def get_overview(store: CacheStore = Depends(get_store)) -> dict:
    overview = await store.get_portfolio_overview()
    pnl = await PNLService(store).combined_pnl()
    return ok(
        data={
            "total_wallets": overview["total_wallets"],
            "successful_wallets": overview["successful_wallets"],
            "failed_wallets": overview["failed_wallets"],
            "pending_wallets": overview["pending_wallets"],
            "total_sol_balance": serializers.dec(overview["total_sol_balance"]),
            "total_usd_value": serializers.dec(overview["total_usd_value"]),
            "last_updated": serializers.iso(overview["last_updated"]),
            "pnl": serializers.combined_pnl_summary(pnl),
        }
    )


@router.get("/status")
async def get_status(
    store: CacheStore = Depends(get_store),
    engine: IngestionEngine | None = Depends(get_optional_engine),
) -> dict:
    db_health = await store.health_check()
    ingestion_health = await engine.health_check() if engine else {"status": "unavailable"}
    overview = await store.get_portfolio_overview()

    last_updated: datetime | None = overview["last_updated"]
    minutes_since_update = None
    if last_updated is not None:
        delta = datetime.now(timezone.utc) - as_utc(last_updated)
        minutes_since_update = int(delta.total_seconds() // 60)

    try:
        stats = csv_stats(settings.WALLETS_CSV_PATH)
        csv_data = {"total_entries": stats.total_entries, "unique_wallets": stats.unique_wallets}
    except AddressSourceError as exc:
        csv_data = {"error": str(exc)}

    return ok(
        data={
            "database": db_health["status"],
            "ingestion": ingestion_health["status"],
            "data_freshness": {
                "last_updated": serializers.iso(last_updated),
                "minutes_since_update": minutes_since_update,
                "is_fresh": minutes_since_update is not None and minutes_since_update < FRESHNESS_MINUTES,
            },
            "wallet_stats": {
                "csv": csv_data,
                "processed_wallets": overview["total_wallets"],
                "successful_wallets": overview["successful_wallets"],
                "error_wallets": overview["failed_wallets"],
            },
        }
    )


@router.get("/metrics")
async def get_metrics(store: CacheStore = Depends(get_store)) -> dict:
    """
    Rendimiento calculado sobre los 100 FetchLog más recientes
    y los 20 errores más recientes (solo los de las últimas 24h cuentan para la tasa).
    """
    recent = await store.get_recent_fetch_logs(100)
    errors = await store.get_error_logs(20)
    system_metrics = await store.get_all_system_metrics()

    successful = [log for log in recent if log.status == "success"]
    day_ago = datetime.now(timezone.utc) - timedelta(hours=24)
    errors_24h = [log for log in errors if as_utc(log.timestamp) > day_ago]

    avg_response = sum(log.response_time_ms for log in successful) / len(successful) if successful else 0
    error_rate = len(errors_24h) / len(recent) * 100 if recent else 0

    return ok(
        data={
            "performance": {
                "average_response_time_ms": round(avg_response),
                "error_rate": round(error_rate, 2),
                "total_requests": len(recent),
                "successful_requests": len(successful),
                "error_requests_24h": len(errors_24h),
            },
            "system_metrics": system_metrics,
            "recent_errors": [serializers.fetch_log(log) for log in errors[:5]],
        }
    )


@router.get("/pnl")
async def get_pnl(
    store: CacheStore = Depends(get_store),
    limit: int = Query(default=10, ge=1, le=100),
) -> dict:
    pnl = await PNLService(store).combined_pnl(limit=limit)
    return ok(data=serializers.combined_pnl(pnl))


@router.get("/pnl/timeframe/{period}")
async def get_timeframe_pnl(
    period: str,
    store: CacheStore = Depends(get_store),
    limit: int = Query(default=10, ge=1, le=100),
) -> dict:
    if period not in TIMEFRAMES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Periodo inválido. Usa {', '.join(TIMEFRAMES)}",
        )
    pnl = await PNLService(store).timeframe_pnl(period, limit=limit)
    return ok(data={"period": period, **serializers.combined_pnl(pnl)})
