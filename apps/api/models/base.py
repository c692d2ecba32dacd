"""
Base declarativa de SQLAlchemy. Todos los modelos heredan de aquí.
Tipos portables (sa.Uuid, sa.JSON, NUMERIC) para funcionar igual en SQLite y PostgreSQL.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_utc(value: datetime) -> datetime:
    """SQLite devuelve datetimes naive (guardados en UTC); normalizar antes de comparar."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
