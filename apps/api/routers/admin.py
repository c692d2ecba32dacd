"""
Router: /api/v1/admin
POST /refresh          → lanza el orquestador en background sobre el CSV (JWT)
GET  /refresh/status   → estado del último refresh lanzado desde la API
GET  /logs?limit&type  → FetchLog recientes (type=all) o solo errores (type=error)
POST /snapshot         → snapshot manual de todas las wallets correctas (JWT)
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from core.config import settings
from core.dependencies import get_current_user, get_engine, get_store
from core.responses import ok
from ingestion.engine import IngestionEngine
from ingestion.prefetch import prefetch_wallets
from routers import serializers
from services.cache_store import CacheStore
from services.snapshots import create_snapshots

logger = structlog.get_logger(__name__)

router = APIRouter()

# Último refresh lanzado desde la API (un solo proceso de API)
_last_refresh: dict = {}


async def _run_refresh(engine: IngestionEngine, force_refresh: bool) -> None:
    _last_refresh.update(
        {
            "status": "running",
            "started_at": datetime.now(timezone.utc).isoformat(),
            "finished_at": None,
            "result": None,
            "error": None,
        }
    )
    try:
        result = await prefetch_wallets(engine, settings, force_refresh=force_refresh)
    except Exception as exc:
        logger.error("admin.refresh_failed", error=str(exc), exc_info=exc)
        _last_refresh.update(
            {
                "status": "error",
                "finished_at": datetime.now(timezone.utc).isoformat(),
                "error": str(exc),
            }
        )
        return

    _last_refresh.update(
        {
            "status": "idle" if result.failed == 0 else "completed_with_errors",
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "result": result.to_dict(),
        }
    )


@router.post("/refresh", status_code=status.HTTP_202_ACCEPTED)
async def trigger_refresh(
    background_tasks: BackgroundTasks,
    force_refresh: bool = Query(default=False),
    engine: IngestionEngine = Depends(get_engine),
    _user: str = Depends(get_current_user),
) -> dict:
    if _last_refresh.get("status") == "running":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Ya hay un refresh en curso")
    if not Path(settings.WALLETS_CSV_PATH).exists():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"No existe el CSV de wallets: {settings.WALLETS_CSV_PATH}",
        )

    _last_refresh["status"] = "running"
    background_tasks.add_task(_run_refresh, engine, force_refresh)
    logger.info("admin.refresh_triggered", force_refresh=force_refresh)
    return ok(data={"status": "accepted", "force_refresh": force_refresh})


@router.get("/refresh/status")
async def refresh_status(_user: str = Depends(get_current_user)) -> dict:
    return ok(data=_last_refresh or {"status": "never_run"})


@router.get("/logs")
async def get_logs(
    store: CacheStore = Depends(get_store),
    limit: int = Query(default=50, ge=1, le=1000),
    type: Literal["all", "error"] = Query(default="all"),
) -> dict:
    if type == "error":
        logs = await store.get_error_logs(limit)
    else:
        logs = await store.get_recent_fetch_logs(limit)
    return ok(data=[serializers.fetch_log(log) for log in logs], meta={"type": type, "count": len(logs)})


@router.post("/snapshot")
async def trigger_snapshot(
    store: CacheStore = Depends(get_store),
    _user: str = Depends(get_current_user),
) -> dict:
    stats = await create_snapshots(store, snapshot_type="manual")
    return ok(data={"created": stats.created, "skipped": stats.skipped, "errors": stats.errors})
