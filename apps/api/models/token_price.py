"""
Modelo token_prices: último precio conocido por mint (last-writer-wins).
"""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class TokenPrice(Base):
    __tablename__ = "token_prices"

    __table_args__ = (
        sa.Index("ix_token_prices_last_updated", "last_updated"),
    )

    mint: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    symbol: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    # NUMERIC(36,18): memecoins con precios de 1e-9 USD
    price: Mapped[Decimal] = mapped_column(sa.NUMERIC(36, 18), nullable=False)
    price_change_24h: Mapped[Decimal | None] = mapped_column(sa.NUMERIC(20, 8), nullable=True)
    market_cap: Mapped[Decimal | None] = mapped_column(sa.NUMERIC(30, 2), nullable=True)
    image_url: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    last_updated: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(sa.String(30), nullable=False)
