"""
Configuración del motor SQLAlchemy async y fábrica de sesiones.
SQLite (aiosqlite) por defecto; PostgreSQL (asyncpg) en despliegues con más carga.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Crea el motor async. SQLite no admite los parámetros de pool de Postgres."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,   # detecta conexiones muertas
        pool_size=5,
        max_overflow=10,
    )


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.APP_ENV == "development")

AsyncSessionLocal = build_sessionmaker(engine)
