from __future__ import annotations

import logging
import os
import sys

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext

from ambulink.infra.db import get_engine

logger = logging.getLogger(__name__)

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def alembic_config() -> Config:
    return Config(ALEMBIC_CONFIG)


def current_revision() -> str | None:
    with get_engine().connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def run_upgrade(revision: str = "head") -> None:
    before = current_revision()
    command.upgrade(alembic_config(), revision)
    logger.info("database upgraded from %s to %s", before or "base", current_revision())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_upgrade(sys.argv[1] if len(sys.argv) > 1 else "head")
