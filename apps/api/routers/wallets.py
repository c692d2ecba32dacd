"""
Router: /api/v1/wallets
GET  /all?limit&offset          → wallets en caché, de mayor a menor valor
GET  /balance/{address}         → registro de una wallet
POST /balances                  → registros de varias wallets (inválidas o ausentes se omiten)
GET  /history/{address}?limit   → snapshots de la wallet, más recientes primero
GET  /pnl/{address}             → PNL contra el primer snapshot
GET  /pnl/{address}/{period}    → PNL contra el primer snapshot de la ventana 24h | 7d | 30d
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from core.dependencies import get_store
from core.responses import ok
from ingestion.addresses import is_valid_address
from routers import serializers
from services.cache_store import CacheStore
from services.pnl_service import TIMEFRAMES, PNLService

router = APIRouter()


class BalancesRequest(BaseModel):
    addresses: list[str] = Field(max_length=1000)


def _require_valid_address(address: str) -> None:
    if not is_valid_address(address):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid wallet address")


def _require_period(period: str) -> None:
    if period not in TIMEFRAMES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Periodo inválido. Usa {', '.join(TIMEFRAMES)}",
        )


@router.get("/all")
async def list_wallets(
    store: CacheStore = Depends(get_store),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> dict:
    wallets = await store.get_all_wallet_balances(limit=limit, offset=offset)
    overview = await store.get_portfolio_overview()
    return ok(
        data=[serializers.wallet_balance(w) for w in wallets],
        meta={"total": overview["total_wallets"], "limit": limit, "offset": offset},
    )


@router.get("/balance/{address}")
async def get_balance(address: str, store: CacheStore = Depends(get_store)) -> dict:
    _require_valid_address(address)
    record = await store.get_wallet_balance(address)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet not found")
    return ok(data=serializers.wallet_balance(record))


@router.post("/balances")
async def get_balances(body: BalancesRequest, store: CacheStore = Depends(get_store)) -> dict:
    valid = [address for address in dict.fromkeys(body.addresses) if is_valid_address(address)]
    records = {r.wallet_address: r for r in await store.get_wallet_balances(valid)}
    return ok(
        data=[serializers.wallet_balance(records[a]) for a in valid if a in records],
        meta={"requested": len(body.addresses), "found": len(records)},
    )


@router.get("/history/{address}")
async def get_history(
    address: str,
    store: CacheStore = Depends(get_store),
    limit: int = Query(default=50, ge=1, le=1000),
) -> dict:
    _require_valid_address(address)
    snapshots = await store.get_portfolio_snapshots(address, limit=limit)
    return ok(data=[serializers.snapshot(s) for s in snapshots], meta={"count": len(snapshots)})


@router.get("/pnl/{address}")
async def get_wallet_pnl(address: str, store: CacheStore = Depends(get_store)) -> dict:
    _require_valid_address(address)
    pnl = await PNLService(store).wallet_pnl(address)
    if pnl is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet PNL not found")
    return ok(data=serializers.wallet_pnl(pnl))


@router.get("/pnl/{address}/{period}")
async def get_wallet_timeframe_pnl(
    address: str,
    period: str,
    store: CacheStore = Depends(get_store),
) -> dict:
    _require_valid_address(address)
    _require_period(period)
    pnl = await PNLService(store).wallet_timeframe_pnl(address, period)
    if pnl is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet PNL not found")
    return ok(data={"period": period, **serializers.wallet_pnl(pnl)})
