"""create token_prices table

Revision ID: 002_create_token_prices
Revises: 001_create_wallet_balances
Create Date: 2026-10-19 00:01:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002_create_token_prices"
down_revision: Union[str, None] = "001_create_wallet_balances"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "token_prices",
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("symbol", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        # NUMERIC(36,18): precios de memecoins por debajo de 1e-9 USD
        sa.Column("price", sa.NUMERIC(36, 18), nullable=False),
        sa.Column("price_change_24h", sa.NUMERIC(20, 8), nullable=True),
        sa.Column("market_cap", sa.NUMERIC(30, 2), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("last_updated", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.PrimaryKeyConstraint("mint"),
    )
    # get_stale_token_prices filtra por last_updated
    op.create_index("ix_token_prices_last_updated", "token_prices", ["last_updated"])


def downgrade() -> None:
    op.drop_index("ix_token_prices_last_updated", table_name="token_prices")
    op.drop_table("token_prices")
