# src/chatline/scripts/migrate.py
"""Apply Alembic migrations to the configured database."""

from __future__ import annotations

import os
import sys

from alembic import command
from alembic.config import Config

from chatline.core.settings import settings

MIGRATIONS_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "..", "migrations")
)


def run_upgrade_head(database_url: str | None = None) -> None:
    cfg = Config(os.path.join(MIGRATIONS_DIR, "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", database_url or settings.effective_database_url)
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    command.upgrade(cfg, "head")


def main() -> int:
    run_upgrade_head()
    return 0


if __name__ == "__main__":
    sys.exit(main())
