"""
Modelo system_metrics: pares clave/valor con el resultado de la última ingesta.
"""

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class SystemMetric(Base):
    __tablename__ = "system_metrics"

    metric_name: Mapped[str] = mapped_column(sa.String(100), primary_key=True)
    metric_value: Mapped[str] = mapped_column(sa.Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), nullable=False)
