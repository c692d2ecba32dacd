"""
Modelo portfolio_snapshots: captura inmutable de una wallet en un instante.
El snapshot más antiguo de cada wallet es la base de coste del PNL.
"""

import uuid
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, new_uuid

SNAPSHOT_TYPES = ("manual", "scheduled")


class PortfolioSnapshot(Base):
    __tablename__ = "portfolio_snapshots"

    __table_args__ = (
        sa.Index("ix_portfolio_snapshots_wallet_ts", "wallet_address", "snapshot_timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=new_uuid)
    wallet_address: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    snapshot_timestamp: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), nullable=False)
    sol_balance: Mapped[Decimal] = mapped_column(sa.NUMERIC(36, 18), nullable=False)
    # Copia de wallet_balances.tokens en el momento del snapshot
    tokens: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    total_usd_value: Mapped[Decimal] = mapped_column(sa.NUMERIC(20, 8), nullable=False)
    snapshot_type: Mapped[str] = mapped_column(
        sa.Enum(*SNAPSHOT_TYPES, name="snapshot_type", native_enum=False),
        nullable=False,
    )
