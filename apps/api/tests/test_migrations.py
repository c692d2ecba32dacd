"""
Tests de las migraciones Alembic sobre un SQLite temporal.
"""

from pathlib import Path

import sqlalchemy as sa
from alembic import command
from alembic.config import Config

from core.config import settings
from models.base import Base

API_DIR = Path(__file__).resolve().parent.parent


def alembic_config() -> Config:
    config = Config()
    config.set_main_option("script_location", str(API_DIR / "alembic"))
    return config


def test_upgrade_head_creates_every_table(monkeypatch, tmp_path):
    db_file = tmp_path / "data" / "aum.db"
    monkeypatch.setattr(settings, "DATABASE_SYNC_URL", f"sqlite:///{db_file}")

    command.upgrade(alembic_config(), "head")

    assert db_file.exists()
    engine = sa.create_engine(f"sqlite:///{db_file}")
    try:
        inspector = sa.inspect(engine)
        assert set(inspector.get_table_names()) == {*Base.metadata.tables, "alembic_version"}
        for name, table in Base.metadata.tables.items():
            migrated = {column["name"] for column in inspector.get_columns(name)}
            assert migrated == {column.name for column in table.columns}, name
    finally:
        engine.dispose()


def test_downgrade_base_drops_tables(monkeypatch, tmp_path):
    db_file = tmp_path / "aum.db"
    monkeypatch.setattr(settings, "DATABASE_SYNC_URL", f"sqlite:///{db_file}")
    config = alembic_config()

    command.upgrade(config, "head")
    command.downgrade(config, "base")

    engine = sa.create_engine(f"sqlite:///{db_file}")
    try:
        assert sa.inspect(engine).get_table_names() == ["alembic_version"]
    finally:
        engine.dispose()
