"""
Modelo fetch_logs: auditoría append-only de cada llamada a proveedores.
El motor nunca actualiza ni borra filas de esta tabla.
"""

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, new_uuid

FETCH_OPERATIONS = ("balance", "tokens", "prices", "validate")


class FetchLog(Base):
    __tablename__ = "fetch_logs"

    __table_args__ = (
        sa.Index("ix_fetch_logs_timestamp", "timestamp"),
        sa.Index("ix_fetch_logs_status_timestamp", "status", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=new_uuid)
    # Dirección de la wallet o "system" para operaciones globales (precios)
    wallet_address: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), nullable=False)
    operation: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    error_details: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    response_time_ms: Mapped[int] = mapped_column(sa.Integer, nullable=False)
