from __future__ import annotations

import pytest
from alembic.config import Config

from phone_assets.infra import migrate


def test_upgrade_head_targets_configured_database(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[Config, str]] = []
    monkeypatch.setattr(migrate.command, "upgrade", lambda config, revision: calls.append((config, revision)))

    migrate.run_upgrade_head("sqlite:///./migrated.db")

    assert len(calls) == 1
    config, revision = calls[0]
    assert revision == "head"
    assert config.attributes["database_url"] == "sqlite:///./migrated.db"
    assert config.get_main_option("script_location").endswith("infra/migrations")


def test_default_database_url_comes_from_db_settings() -> None:
    config = migrate.build_config()

    assert config.attributes["database_url"] == migrate.DATABASE_URL
