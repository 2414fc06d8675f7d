"""Apply database migrations up to head."""
from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

from chatterbox.core.settings import settings

PROJECT_ROOT = Path(__file__).resolve().parents[3]
MIGRATIONS_DIR = PROJECT_ROOT / "migrations"


def build_config(url: str | None = None) -> Config:
    """Return an Alembic config pointed at the project's migrations."""
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    cfg.set_main_option("sqlalchemy.url", url or settings.database_url_sync)
    return cfg


def run_upgrade_head(url: str | None = None) -> None:
    command.upgrade(build_config(url), "head")


if __name__ == "__main__":
    run_upgrade_head()
