"""create system_metrics table

Revision ID: 005_create_system_metrics
Revises: 004_create_portfolio_snapshots
Create Date: 2026-10-19 00:04:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "005_create_system_metrics"
down_revision: Union[str, None] = "004_create_portfolio_snapshots"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "system_metrics",
        sa.Column("metric_name", sa.String(100), nullable=False),
        sa.Column("metric_value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("metric_name"),
    )


def downgrade() -> None:
    op.drop_table("system_metrics")
