"""
Router: /api/v1/tokens
GET  /prices            → precios en caché
POST /prices/refresh    → refresca precios caducados (más de STALE_PRICE_MINUTES)
GET  /pnl               → top gainers / losers por token
GET  /aggregated        → holdings agregados entre wallets + precio de SOL
GET  /holders/{mint}    → wallets que tienen el token
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from core.config import settings
from core.dependencies import get_engine, get_optional_engine, get_store
from core.responses import ok
from ingestion.addresses import NATIVE_MINT
from ingestion.engine import IngestionEngine
from routers import serializers
from services.cache_store import CacheStore
from services.pnl_service import PNLService

router = APIRouter()


def _dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


@router.get("/prices")
async def list_prices(store: CacheStore = Depends(get_store)) -> dict:
    prices = await store.get_all_token_prices()
    return ok(data=[serializers.token_price(p) for p in prices], meta={"count": len(prices)})


@router.post("/prices/refresh")
async def refresh_prices(engine: IngestionEngine = Depends(get_engine)) -> dict:
    refreshed = await engine.refresh_stale_prices()
    return ok(data={"refreshed": refreshed})


@router.get("/pnl")
async def get_token_pnl(
    store: CacheStore = Depends(get_store),
    limit: int = Query(default=10, ge=1, le=100),
) -> dict:
    pnl = await PNLService(store).combined_pnl(limit=limit)
    return ok(
        data={
            "top_gainers": [serializers.token_pnl(t) for t in pnl.top_gainers],
            "top_losers": [serializers.token_pnl(t) for t in pnl.top_losers],
        }
    )


@router.get("/aggregated")
async def get_aggregated(
    store: CacheStore = Depends(get_store),
    engine: IngestionEngine | None = Depends(get_optional_engine),
) -> dict:
    """
    Suma cantidades y valor USD por mint sobre las wallets con fetch correcto.
    Con la ingesta configurada el precio de SOL sale de get_native_price();
    sin ella, de la caché o NATIVE_PRICE_FALLBACK_USD.
    """
    if engine is not None:
        sol_price = await engine.get_native_price()
    else:
        native = await store.get_token_price(NATIVE_MINT)
        sol_price = _dec(native.price) if native else Decimal(settings.NATIVE_PRICE_FALLBACK_USD)
    prices = {p.mint: p for p in await store.get_all_token_prices()}

    aggregated: dict[str, dict] = {}
    for wallet in await store.get_all_wallet_balances():
        if wallet.fetch_status != "success":
            continue
        for token in wallet.tokens or []:
            entry = aggregated.setdefault(
                token["mint"],
                {
                    "mint": token["mint"],
                    "symbol": token.get("symbol") or "Unknown",
                    "name": token.get("name") or "Unknown Token",
                    "total_amount": Decimal("0"),
                    "total_value": Decimal("0"),
                    "wallet_count": 0,
                },
            )
            entry["total_amount"] += _dec(token.get("amount"))
            entry["total_value"] += _dec(token.get("usd_value"))
            entry["wallet_count"] += 1

    tokens = sorted(aggregated.values(), key=lambda t: t["total_value"], reverse=True)
    rows = []
    for token in tokens:
        price = prices.get(token["mint"])
        rows.append(
            {
                **token,
                "total_amount": str(token["total_amount"]),
                "total_value": str(token["total_value"]),
                "price": serializers.dec(price.price) if price else "0",
                "price_change_24h": serializers.dec(price.price_change_24h) if price else None,
                "image_url": price.image_url if price else None,
            }
        )
    return ok(data={"sol_price": str(sol_price), "tokens": rows})


@router.get("/holders/{mint}")
async def get_holders(mint: str, store: CacheStore = Depends(get_store)) -> dict:
    price_row = await store.get_token_price(mint)
    price = _dec(price_row.price) if price_row else Decimal("0")

    holders = []
    total_amount = Decimal("0")
    for holder in await store.get_token_holders(mint):
        amount = _dec(holder["amount"])
        value = amount * price
        holders.append(
            {
                "address": holder["wallet_address"],
                "wallet_id": holder["wallet_id"],
                "balance": str(amount),
                "value": str(value),
            }
        )
        total_amount += amount

    pnl = await PNLService(store).combined_pnl()
    token_pnl = next((t for t in pnl.tokens if t.mint == mint), None)

    return ok(
        data={
            "mint": mint,
            "symbol": price_row.symbol if price_row else "Unknown",
            "name": price_row.name if price_row else "Unknown Token",
            "price": str(price),
            "price_change_24h": serializers.dec(price_row.price_change_24h) if price_row else None,
            "image_url": price_row.image_url if price_row else None,
            "total_amount": str(total_amount),
            "total_value": str(total_amount * price),
            "holder_count": len(holders),
            "holders": holders,
            "pnl": (
                {"total_pnl": str(token_pnl.total_pnl), "avg_entry_price": str(token_pnl.initial_price)}
                if token_pnl
                else None
            ),
        }
    )
