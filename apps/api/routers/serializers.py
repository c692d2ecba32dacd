"""
Conversión de modelos y dataclasses a dicts JSON para los routers.
Decimal siempre como str (nunca float); fechas en ISO 8601 UTC.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from models.base import as_utc
from models.fetch_log import FetchLog
from models.portfolio_snapshot import PortfolioSnapshot
from models.token_price import TokenPrice
from models.wallet_balance import WalletBalance
from services.pnl_service import CombinedPNL, TokenPNL, WalletPNL


def dec(value: Any) -> str | None:
    if value is None:
        return None
    return str(Decimal(str(value)))


def iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def wallet_balance(record: WalletBalance) -> dict[str, Any]:
    return {
        "wallet_address": record.wallet_address,
        "wallet_id": record.wallet_id,
        "sol_balance": dec(record.sol_balance),
        "tokens": record.tokens or [],
        "total_usd_value": dec(record.total_usd_value),
        "last_updated": iso(record.last_updated),
        "fetch_status": record.fetch_status,
        "error_message": record.error_message,
        "retry_count": record.retry_count,
    }


def token_price(price: TokenPrice) -> dict[str, Any]:
    return {
        "mint": price.mint,
        "symbol": price.symbol,
        "name": price.name,
        "price": dec(price.price),
        "price_change_24h": dec(price.price_change_24h),
        "market_cap": dec(price.market_cap),
        "image_url": price.image_url,
        "last_updated": iso(price.last_updated),
        "source": price.source,
    }


def fetch_log(log: FetchLog) -> dict[str, Any]:
    return {
        "id": str(log.id),
        "wallet_address": log.wallet_address,
        "timestamp": iso(log.timestamp),
        "operation": log.operation,
        "status": log.status,
        "error_details": log.error_details,
        "response_time_ms": log.response_time_ms,
    }


def snapshot(snap: PortfolioSnapshot) -> dict[str, Any]:
    return {
        "timestamp": iso(snap.snapshot_timestamp),
        "sol_balance": dec(snap.sol_balance),
        "tokens": snap.tokens or [],
        "total_usd_value": dec(snap.total_usd_value),
        "snapshot_type": snap.snapshot_type,
    }


def token_pnl(token: TokenPNL) -> dict[str, Any]:
    return {
        "mint": token.mint,
        "symbol": token.symbol,
        "initial_amount": dec(token.initial_amount),
        "current_amount": dec(token.current_amount),
        "initial_price": dec(token.initial_price),
        "current_price": dec(token.current_price),
        "initial_value": dec(token.initial_value),
        "current_value": dec(token.current_value),
        "realized_pnl": dec(token.realized_pnl),
        "unrealized_pnl": dec(token.unrealized_pnl),
        "total_pnl": dec(token.total_pnl),
    }


def wallet_pnl(pnl: WalletPNL) -> dict[str, Any]:
    return {
        "wallet_address": pnl.wallet_address,
        "initial_value": dec(pnl.initial_value),
        "current_value": dec(pnl.current_value),
        "realized_pnl": dec(pnl.realized_pnl),
        "unrealized_pnl": dec(pnl.unrealized_pnl),
        "total_pnl": dec(pnl.total_pnl),
        "total_pnl_percentage": dec(pnl.total_pnl_percentage),
        "first_snapshot_date": iso(pnl.first_snapshot_date),
        "token_breakdown": [token_pnl(t) for t in pnl.tokens],
    }


def combined_pnl_summary(pnl: CombinedPNL) -> dict[str, Any]:
    return {
        "total_initial_value": dec(pnl.total_initial_value),
        "total_current_value": dec(pnl.total_current_value),
        "total_realized_pnl": dec(pnl.total_realized_pnl),
        "total_unrealized_pnl": dec(pnl.total_unrealized_pnl),
        "total_pnl": dec(pnl.total_pnl),
        "total_pnl_percentage": dec(pnl.total_pnl_percentage),
        "wallet_count": pnl.wallet_count,
    }


def combined_pnl(pnl: CombinedPNL) -> dict[str, Any]:
    return {
        **combined_pnl_summary(pnl),
        "top_gainers": [token_pnl(t) for t in pnl.top_gainers],
        "top_losers": [token_pnl(t) for t in pnl.top_losers],
    }
