"""
Caché relacional del motor de ingesta.

Reglas:
- Una sesión AsyncSession corta por operación: los pipelines de wallets
  concurrentes nunca comparten sesión.
- Escrituras de una sola fila con upsert nativo del dialecto
  (INSERT ... ON CONFLICT DO UPDATE) en PostgreSQL y SQLite.
- fetch_logs y portfolio_snapshots son append-only: aquí no hay update ni delete.
- Los importes llegan como Decimal; los holdings ya serializados (strings) para la columna JSON.
"""

import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import desc, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine

from core.database import build_sessionmaker
from models.base import Base, as_utc, utcnow
from models.fetch_log import FetchLog
from models.portfolio_snapshot import PortfolioSnapshot
from models.system_metric import SystemMetric
from models.token_price import TokenPrice
from models.wallet_balance import WalletBalance

logger = structlog.get_logger(__name__)


class CacheStore:
    """
    Acceso a las tablas de la caché.

    Uso:
        store = CacheStore(engine)
        await store.create_schema()
        await store.upsert_token_price(mint, "BONK", "Bonk", Decimal("0.00002"), source="jupiter")
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = build_sessionmaker(engine)

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    def _insert(self, model):
        if self.dialect == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    async def _execute_write(self, stmt) -> None:
        async with self._sessions() as session:
            await session.execute(stmt)
            await session.commit()

    async def _scalars(self, stmt) -> list:
        async with self._sessions() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def _scalar_one_or_none(self, stmt):
        async with self._sessions() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def create_schema(self) -> None:
        """Crea las tablas que falten (SQLite/desarrollo). En Postgres usar Alembic."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("cache_store.schema_ready", dialect=self.dialect)

    # -----------------------------------------------------------------------
    # wallet_balances
    # -----------------------------------------------------------------------

    async def upsert_wallet_balance(
        self,
        wallet_address: str,
        wallet_id: str,
        sol_balance: Decimal,
        tokens: list[dict[str, Any]],
        total_usd_value: Decimal,
        fetch_status: str,
        error_message: str | None = None,
    ) -> None:
        """
        Una fila por dirección. retry_count vuelve a 0 con cada éxito y
        suma 1 por cada error consecutivo.
        """
        table = WalletBalance.__table__
        if fetch_status == "error":
            initial_retries, retry_expr = 1, table.c.retry_count + 1
        elif fetch_status == "success":
            initial_retries, retry_expr = 0, 0
        else:
            initial_retries, retry_expr = 0, table.c.retry_count

        stmt = self._insert(WalletBalance).values(
            wallet_address=wallet_address,
            wallet_id=wallet_id,
            sol_balance=sol_balance,
            tokens=tokens,
            total_usd_value=total_usd_value,
            last_updated=utcnow(),
            fetch_status=fetch_status,
            error_message=error_message,
            retry_count=initial_retries,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.wallet_address],
            set_={
                "wallet_id": stmt.excluded.wallet_id,
                "sol_balance": stmt.excluded.sol_balance,
                "tokens": stmt.excluded.tokens,
                "total_usd_value": stmt.excluded.total_usd_value,
                "last_updated": stmt.excluded.last_updated,
                "fetch_status": stmt.excluded.fetch_status,
                "error_message": stmt.excluded.error_message,
                "retry_count": retry_expr,
            },
        )
        await self._execute_write(stmt)

    async def get_wallet_balance(self, wallet_address: str) -> WalletBalance | None:
        return await self._scalar_one_or_none(
            select(WalletBalance).where(WalletBalance.wallet_address == wallet_address)
        )

    async def get_wallet_balances(self, addresses: list[str]) -> list[WalletBalance]:
        if not addresses:
            return []
        return await self._scalars(
            select(WalletBalance).where(WalletBalance.wallet_address.in_(addresses))
        )

    async def get_all_wallet_balances(
        self,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[WalletBalance]:
        """Ordenadas por valor USD descendente (las wallets más grandes primero)."""
        stmt = (
            select(WalletBalance)
            .order_by(desc(WalletBalance.total_usd_value), WalletBalance.wallet_address)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._scalars(stmt)

    async def get_token_holders(self, mint: str) -> list[dict[str, Any]]:
        """Wallets con saldo del mint dado, de mayor a menor cantidad."""
        holders: list[dict[str, Any]] = []
        for wallet in await self._scalars(
            select(WalletBalance).where(WalletBalance.fetch_status == "success")
        ):
            for holding in wallet.tokens or []:
                if holding.get("mint") == mint:
                    holders.append(
                        {
                            "wallet_address": wallet.wallet_address,
                            "wallet_id": wallet.wallet_id,
                            "amount": holding.get("amount", "0"),
                            "usd_value": holding.get("usd_value", "0"),
                        }
                    )
        holders.sort(key=lambda h: Decimal(str(h["amount"])), reverse=True)
        return holders

    # -----------------------------------------------------------------------
    # token_prices
    # -----------------------------------------------------------------------

    async def upsert_token_price(
        self,
        mint: str,
        symbol: str,
        name: str,
        price: Decimal,
        source: str,
        price_change_24h: Decimal | None = None,
        market_cap: Decimal | None = None,
        image_url: str | None = None,
    ) -> None:
        """Last-writer-wins por mint."""
        stmt = self._insert(TokenPrice).values(
            mint=mint,
            symbol=symbol,
            name=name,
            price=price,
            price_change_24h=price_change_24h,
            market_cap=market_cap,
            image_url=image_url,
            last_updated=utcnow(),
            source=source,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[TokenPrice.__table__.c.mint],
            set_={
                "symbol": stmt.excluded.symbol,
                "name": stmt.excluded.name,
                "price": stmt.excluded.price,
                "price_change_24h": stmt.excluded.price_change_24h,
                "market_cap": stmt.excluded.market_cap,
                "image_url": stmt.excluded.image_url,
                "last_updated": stmt.excluded.last_updated,
                "source": stmt.excluded.source,
            },
        )
        await self._execute_write(stmt)

    async def get_token_price(self, mint: str) -> TokenPrice | None:
        return await self._scalar_one_or_none(select(TokenPrice).where(TokenPrice.mint == mint))

    async def get_all_token_prices(self) -> list[TokenPrice]:
        return await self._scalars(select(TokenPrice).order_by(TokenPrice.symbol))

    async def get_stale_token_prices(self, max_age_minutes: int) -> list[TokenPrice]:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=max_age_minutes)
        return await self._scalars(
            select(TokenPrice).where(TokenPrice.last_updated < cutoff).order_by(TokenPrice.mint)
        )

    # -----------------------------------------------------------------------
    # fetch_logs (append-only)
    # -----------------------------------------------------------------------

    async def insert_fetch_log(
        self,
        wallet_address: str,
        operation: str,
        status: str,
        response_time_ms: int,
        error_details: str | None = None,
    ) -> None:
        async with self._sessions() as session:
            session.add(
                FetchLog(
                    wallet_address=wallet_address,
                    timestamp=utcnow(),
                    operation=operation,
                    status=status,
                    error_details=error_details,
                    response_time_ms=response_time_ms,
                )
            )
            await session.commit()

    async def get_recent_fetch_logs(self, limit: int = 100) -> list[FetchLog]:
        return await self._scalars(
            select(FetchLog).order_by(desc(FetchLog.timestamp)).limit(limit)
        )

    async def get_error_logs(self, limit: int = 100) -> list[FetchLog]:
        return await self._scalars(
            select(FetchLog)
            .where(FetchLog.status == "error")
            .order_by(desc(FetchLog.timestamp))
            .limit(limit)
        )

    # -----------------------------------------------------------------------
    # portfolio_snapshots (insert-only)
    # -----------------------------------------------------------------------

    async def insert_portfolio_snapshot(
        self,
        wallet_address: str,
        sol_balance: Decimal,
        tokens: list[dict[str, Any]],
        total_usd_value: Decimal,
        snapshot_type: str,
        snapshot_timestamp: datetime | None = None,
    ) -> None:
        async with self._sessions() as session:
            session.add(
                PortfolioSnapshot(
                    wallet_address=wallet_address,
                    snapshot_timestamp=snapshot_timestamp or utcnow(),
                    sol_balance=sol_balance,
                    tokens=tokens,
                    total_usd_value=total_usd_value,
                    snapshot_type=snapshot_type,
                )
            )
            await session.commit()

    async def get_portfolio_snapshots(self, wallet_address: str, limit: int = 30) -> list[PortfolioSnapshot]:
        """Más recientes primero."""
        return await self._scalars(
            select(PortfolioSnapshot)
            .where(PortfolioSnapshot.wallet_address == wallet_address)
            .order_by(desc(PortfolioSnapshot.snapshot_timestamp))
            .limit(limit)
        )

    async def get_earliest_snapshots(
        self,
        since: datetime | None = None,
        wallet_address: str | None = None,
    ) -> dict[str, PortfolioSnapshot]:
        """
        Snapshot más antiguo por wallet (base de coste del PNL).
        Con since, el más antiguo dentro de la ventana [since, ahora].
        """
        stmt = select(PortfolioSnapshot).order_by(
            PortfolioSnapshot.wallet_address, PortfolioSnapshot.snapshot_timestamp
        )
        if since is not None:
            stmt = stmt.where(PortfolioSnapshot.snapshot_timestamp >= since)
        if wallet_address is not None:
            stmt = stmt.where(PortfolioSnapshot.wallet_address == wallet_address)

        earliest: dict[str, PortfolioSnapshot] = {}
        for snapshot in await self._scalars(stmt):
            earliest.setdefault(snapshot.wallet_address, snapshot)
        return earliest

    # -----------------------------------------------------------------------
    # system_metrics
    # -----------------------------------------------------------------------

    async def upsert_system_metric(self, metric_name: str, metric_value: str) -> None:
        stmt = self._insert(SystemMetric).values(
            metric_name=metric_name,
            metric_value=metric_value,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SystemMetric.__table__.c.metric_name],
            set_={
                "metric_value": stmt.excluded.metric_value,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self._execute_write(stmt)

    async def get_all_system_metrics(self) -> dict[str, str]:
        rows = await self._scalars(select(SystemMetric))
        return {row.metric_name: row.metric_value for row in rows}

    # -----------------------------------------------------------------------
    # Agregados y salud
    # -----------------------------------------------------------------------

    async def get_portfolio_overview(self) -> dict[str, Any]:
        """
        Totales de la caché. Las sumas se hacen con Decimal en Python:
        SUM() sobre NUMERIC en SQLite pasa por float.
        """
        wallets = await self._scalars(select(WalletBalance))

        counts = {"success": 0, "error": 0, "pending": 0}
        total_sol = Decimal("0")
        total_usd = Decimal("0")
        last_updated: datetime | None = None
        for wallet in wallets:
            counts[wallet.fetch_status] = counts.get(wallet.fetch_status, 0) + 1
            total_sol += Decimal(str(wallet.sol_balance))
            total_usd += Decimal(str(wallet.total_usd_value))
            updated = as_utc(wallet.last_updated)
            if last_updated is None or updated > last_updated:
                last_updated = updated

        return {
            "total_wallets": len(wallets),
            "successful_wallets": counts["success"],
            "failed_wallets": counts["error"],
            "pending_wallets": counts["pending"],
            "total_sol_balance": total_sol,
            "total_usd_value": total_usd,
            "last_updated": last_updated,
        }

    async def health_check(self) -> dict[str, Any]:
        start = time.monotonic()
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("cache_store.health_failed", error=str(exc))
            return {"status": "unhealthy", "error": str(exc)}
        return {
            "status": "healthy",
            "dialect": self.dialect,
            "response_time_ms": int((time.monotonic() - start) * 1000),
        }
