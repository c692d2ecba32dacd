"""create fetch_logs table (append-only)

Revision ID: 003_create_fetch_logs
Revises: 002_create_token_prices
Create Date: 2026-10-19 00:02:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "003_create_fetch_logs"
down_revision: Union[str, None] = "002_create_token_prices"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "fetch_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        # Dirección de la wallet o "system"
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("timestamp", sa.TIMESTAMP(timezone=True), nullable=False),
        # balance | tokens | prices | validate
        sa.Column("operation", sa.String(20), nullable=False),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("response_time_ms", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fetch_logs_timestamp", "fetch_logs", ["timestamp"])
    op.create_index("ix_fetch_logs_status_timestamp", "fetch_logs", ["status", "timestamp"])


def downgrade() -> None:
    op.drop_index("ix_fetch_logs_status_timestamp", table_name="fetch_logs")
    op.drop_index("ix_fetch_logs_timestamp", table_name="fetch_logs")
    op.drop_table("fetch_logs")
