"""Programmatic Alembic entry points for the harness database."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy.engine import Engine

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def build_alembic_config(db_path: Path, *, project_root: Path = PROJECT_ROOT) -> Config:
    """Alembic config bound to ``db_path``; ``alembic.ini`` is optional."""

    alembic_ini = project_root / "alembic.ini"
    config = Config(str(alembic_ini)) if alembic_ini.exists() else Config()
    config.set_main_option("script_location", str(project_root / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Apply every pending migration to the SQLite database at ``db_path``."""

    command.upgrade(build_alembic_config(db_path), "head")


def current_revision(engine: Engine) -> str | None:
    """Revision stamped in the database, or None before the first upgrade."""

    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()
