"""
Modelo wallet_balances: estado actual de cada wallet, una fila por dirección.
Escrito solo por el motor de ingesta (upsert por wallet_address); la API solo lee.
"""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base

FETCH_STATUSES = ("success", "error", "pending")


class WalletBalance(Base):
    __tablename__ = "wallet_balances"

    __table_args__ = (
        sa.Index("ix_wallet_balances_fetch_status", "fetch_status"),
    )

    wallet_address: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    # Identificador opaco del grupo de wallets (columna id del CSV)
    wallet_id: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    # NUMERIC(36,18): SOL con precisión de lamport de sobra
    sol_balance: Mapped[Decimal] = mapped_column(sa.NUMERIC(36, 18), nullable=False)
    # Lista ordenada de holdings: [{mint, amount, decimals, symbol, name, usd_value}]
    tokens: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    total_usd_value: Mapped[Decimal] = mapped_column(sa.NUMERIC(20, 8), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), nullable=False)
    fetch_status: Mapped[str] = mapped_column(
        sa.Enum(*FETCH_STATUSES, name="fetch_status", native_enum=False),
        nullable=False,
        server_default="pending",
    )
    error_message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
