from __future__ import annotations

from fastapi.testclient import TestClient

from phone_assets import main as app_main
from phone_assets.infra import locks


def test_healthz_ok() -> None:
    client = TestClient(app_main.app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_ok_when_dependencies_ready(monkeypatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: True)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_readyz_checks_redis_only_for_redis_locks(monkeypatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: False)
    client = TestClient(app_main.app)

    monkeypatch.setattr(locks, "LOCK_BACKEND", "memory")
    assert client.get("/readyz").json()["checks"] == {"db": "ok"}

    monkeypatch.setattr(locks, "LOCK_BACKEND", "redis")
    response = client.get("/readyz")
    assert response.status_code == 503
    assert response.json()["detail"]["checks"] == {"db": "ok", "redis": "fail"}
