from __future__ import annotations

import os
from pathlib import Path

import structlog
from alembic import command
from alembic.config import Config

from phone_assets.infra.db import DATABASE_URL

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", str(Path(__file__).resolve().parents[2] / "alembic.ini"))

logger = structlog.get_logger(__name__)


def build_config(database_url: str | None = None) -> Config:
    config = Config(ALEMBIC_CONFIG)
    config.attributes["database_url"] = database_url or DATABASE_URL
    return config


def run_upgrade_head(database_url: str | None = None) -> None:
    config = build_config(database_url)
    logger.info("migrate.upgrade", target="head", config=ALEMBIC_CONFIG)
    command.upgrade(config, "head")


if __name__ == "__main__":
    run_upgrade_head()
