"""
Alembic environment: migraciones de la caché (SQLite por defecto, Postgres en producción).

Reglas:
- La URL sale siempre de DATABASE_SYNC_URL (sqlite:/// o postgresql+psycopg2://).
- En SQLite se migra en batch mode (ALTER TABLE limitado) y se crea el
  directorio del fichero de BD si no existe.
"""

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

# Añadir apps/api al path para importar modelos y config
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from core.config import settings  # noqa: E402
from models.base import Base  # noqa: E402

# Importar todos los modelos para que Alembic los detecte en autogenerate
import models  # noqa: F401, E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

db_url = make_url(settings.DATABASE_SYNC_URL)
config.set_main_option("sqlalchemy.url", db_url.render_as_string(hide_password=False))
is_sqlite = db_url.get_backend_name() == "sqlite"


def _ensure_sqlite_dir() -> None:
    """sqlite:///data/aum.db falla si data/ no existe."""
    database = db_url.database
    if not database or database == ":memory:":
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


def _configure_options() -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": is_sqlite,
    }


def run_migrations_offline() -> None:
    """Genera SQL sin conectarse a la BD (útil para revisión o CI)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Ejecuta migraciones con conexión activa a la BD."""
    if is_sqlite:
        _ensure_sqlite_dir()
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options())
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
