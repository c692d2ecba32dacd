"""create portfolio_snapshots table (base de coste del PNL)

Revision ID: 004_create_portfolio_snapshots
Revises: 003_create_fetch_logs
Create Date: 2026-10-19 00:03:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "004_create_portfolio_snapshots"
down_revision: Union[str, None] = "003_create_fetch_logs"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "portfolio_snapshots",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("snapshot_timestamp", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("sol_balance", sa.NUMERIC(36, 18), nullable=False),
        sa.Column("tokens", sa.JSON(), nullable=False),
        sa.Column("total_usd_value", sa.NUMERIC(20, 8), nullable=False),
        sa.Column(
            "snapshot_type",
            sa.Enum("manual", "scheduled", name="snapshot_type", native_enum=False),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    # El PNL busca el snapshot más antiguo por wallet
    op.create_index(
        "ix_portfolio_snapshots_wallet_ts",
        "portfolio_snapshots",
        ["wallet_address", "snapshot_timestamp"],
    )


def downgrade() -> None:
    op.drop_index("ix_portfolio_snapshots_wallet_ts", table_name="portfolio_snapshots")
    op.drop_table("portfolio_snapshots")
