"""create wallet_balances table

Revision ID: 001_create_wallet_balances
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_create_wallet_balances"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "wallet_balances",
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("wallet_id", sa.String(100), nullable=False),
        # NUMERIC(36,18): SOL
        sa.Column("sol_balance", sa.NUMERIC(36, 18), nullable=False),
        # Holdings serializados: [{mint, amount, decimals, symbol, name, usd_value}]
        sa.Column("tokens", sa.JSON(), nullable=False),
        sa.Column("total_usd_value", sa.NUMERIC(20, 8), nullable=False),
        sa.Column("last_updated", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "fetch_status",
            sa.Enum("success", "error", "pending", name="fetch_status", native_enum=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("wallet_address"),
    )
    op.create_index("ix_wallet_balances_fetch_status", "wallet_balances", ["fetch_status"])


def downgrade() -> None:
    op.drop_index("ix_wallet_balances_fetch_status", table_name="wallet_balances")
    op.drop_table("wallet_balances")
