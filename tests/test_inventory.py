from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from phone_assets import main as app_main
from phone_assets.domain.models import EventRecord
from phone_assets.infra import audit, db, events


@pytest.fixture()
def inventory_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "inventory_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login_employee(client: TestClient, employee_id: str) -> dict[str, str]:
    response = client.post("/api/identity/employee-login", json={"employee_id": employee_id, "password": "pw"})
    assert response.status_code == 200
    return _auth_header(response.json()["access_token"])


def _due(days: int = 7) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).isoformat()


def _setup(client: TestClient) -> dict[str, str]:
    """Department 7 holds three in-use phones and one idle phone; department 8 holds one in-use phone."""
    client.post("/api/identity/bootstrap-admin", json={"username": "root", "password": "root-pass"})
    login = client.post("/api/identity/login", json={"username": "root", "password": "root-pass"})
    admin = _auth_header(login.json()["access_token"])
    client.put("/api/directory/departments", json={"id": 7, "name": "sales"}, headers=admin)
    client.put("/api/directory/departments", json={"id": 8, "name": "support"}, headers=admin)
    for employee_id, department_id in [("emp1", 7), ("emp2", 7), ("emp3", 8)]:
        client.put(
            "/api/directory/employees",
            json={"id": employee_id, "name": employee_id, "department_id": department_id, "password": "pw"},
            headers=admin,
        )
    holdings = [
        ("13900000001", "emp1"),
        ("13900000002", "emp1"),
        ("13900000003", "emp2"),
        ("13900000004", None),
        ("13900000005", "emp3"),
    ]
    for phone_number, holder in holdings:
        response = client.post(
            "/api/phones",
            json={
                "phone_number": phone_number,
                "applicant_employee_id": holder or "emp2",
                "application_date": "2024-01-01",
                "vendor": "carrier-a",
            },
            headers=admin,
        )
        assert response.status_code == 201
        if holder is not None:
            assigned = client.post(
                f"/api/phones/{phone_number}/assign",
                json={"employee_id": holder, "purpose": "field", "assignment_date": "2024-01-01"},
                headers=admin,
            )
            assert assigned.status_code == 200
    return admin


def _create_task(client: TestClient, headers: dict[str, str], scope_type: str, scope_values: list[str]):
    return client.post(
        "/api/inventory/tasks",
        json={"name": "q3 audit", "due_at": _due(), "scope_type": scope_type, "scope_values": scope_values},
        headers=headers,
    )


def _items(client: TestClient, headers: dict[str, str], task_id: str) -> list[dict]:
    response = client.get(f"/api/inventory/tasks/{task_id}/items", headers=headers)
    assert response.status_code == 200
    return response.json()


def _act(client: TestClient, headers: dict[str, str], task_id: str, item_id: str, action: str, prefix: str = ""):
    return client.post(
        f"/api{prefix}/inventory/tasks/{task_id}/items/{item_id}/action",
        json={"action": action, "comment": "checked"},
        headers=headers,
    )


def test_department_task_completes_when_no_item_pending(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)

    created = _create_task(inventory_client, admin, "department_ids", ["7"])
    assert created.status_code == 201
    task = created.json()
    assert task["status"] == "pending"
    assert task["summary"]["total"] == 3
    assert task["summary"]["pending"] == 3

    items = _items(inventory_client, admin, task["id"])
    assert sorted(item["phone_number"] for item in items) == ["13900000001", "13900000002", "13900000003"]
    assert {item["status"] for item in items} == {"pending"}

    assert _act(inventory_client, admin, task["id"], items[0]["id"], "confirm").status_code == 200
    progress = inventory_client.get(f"/api/inventory/tasks/{task['id']}", headers=admin).json()
    assert progress["status"] == "in_progress"

    assert _act(inventory_client, admin, task["id"], items[1]["id"], "confirm").status_code == 200
    assert _act(inventory_client, admin, task["id"], items[2]["id"], "markUnavailable").status_code == 200

    done = inventory_client.get(f"/api/inventory/tasks/{task['id']}", headers=admin).json()
    assert done["status"] == "completed"
    assert done["summary"] == {"total": 3, "pending": 0, "confirmed": 2, "unavailable": 1, "unlisted_reported": 0}

    with Session(db.engine) as session:
        event_types = session.exec(select(EventRecord.event_type)).all()
    assert event_types.count("TaskCreated") == 1
    assert event_types.count("TaskItemUpdated") == 3


def test_create_task_validation(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)

    empty = _create_task(inventory_client, admin, "department_ids", [])
    assert empty.status_code == 422
    assert empty.json()["error"]["kind"] == "Validation"

    past = inventory_client.post(
        "/api/inventory/tasks",
        json={"name": "late", "due_at": _due(-1), "scope_type": "department_ids", "scope_values": ["7"]},
        headers=admin,
    )
    assert past.status_code == 422
    assert past.json()["error"]["kind"] == "Validation"

    assert _create_task(inventory_client, admin, "department_ids", ["seven"]).status_code == 422
    assert _create_task(inventory_client, admin, "department_ids", ["99"]).status_code == 404
    assert _create_task(inventory_client, admin, "employee_ids", ["ghost"]).status_code == 404


def test_create_task_requires_manage_on_every_scope_value(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)
    created = inventory_client.post(
        "/api/directory/admin-users",
        json={"username": "lead", "password": "lead-pass"},
        headers=admin,
    )
    inventory_client.put(
        f"/api/directory/admin-users/{created.json()['id']}/grants",
        json={"grants": [{"department_id": 7, "scope": "manage"}, {"department_id": 8, "scope": "view"}]},
        headers=admin,
    )
    login = inventory_client.post("/api/identity/login", json={"username": "lead", "password": "lead-pass"})
    lead = _auth_header(login.json()["access_token"])

    assert _create_task(inventory_client, lead, "department_ids", ["7"]).status_code == 201
    denied = _create_task(inventory_client, lead, "department_ids", ["7", "8"])
    assert denied.status_code == 403
    assert denied.json()["error"]["kind"] == "Forbidden"
    assert _create_task(inventory_client, lead, "employee_ids", ["emp3"]).status_code == 403


def test_employee_scope_selects_held_phones(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)

    task = _create_task(inventory_client, admin, "employee_ids", ["emp2", "emp3"]).json()

    items = _items(inventory_client, admin, task["id"])
    assert sorted(item["phone_number"] for item in items) == ["13900000003", "13900000005"]


def test_items_are_a_snapshot(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)
    task = _create_task(inventory_client, admin, "department_ids", ["7"]).json()

    recovered = inventory_client.post(
        "/api/phones/13900000001/recover",
        json={"reclaim_date": "2024-06-01"},
        headers=admin,
    )
    assert recovered.status_code == 200
    assigned = inventory_client.post(
        "/api/phones/13900000004/assign",
        json={"employee_id": "emp2", "purpose": "field", "assignment_date": "2024-06-01"},
        headers=admin,
    )
    assert assigned.status_code == 200

    items = _items(inventory_client, admin, task["id"])
    assert sorted(item["phone_number"] for item in items) == ["13900000001", "13900000002", "13900000003"]


def test_unavailable_item_is_terminal(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)
    task = _create_task(inventory_client, admin, "department_ids", ["7"]).json()
    item = _items(inventory_client, admin, task["id"])[0]

    assert _act(inventory_client, admin, task["id"], item["id"], "confirm").status_code == 200
    assert _act(inventory_client, admin, task["id"], item["id"], "confirm").status_code == 200
    assert _act(inventory_client, admin, task["id"], item["id"], "markUnavailable").status_code == 200

    retry = _act(inventory_client, admin, task["id"], item["id"], "confirm")
    assert retry.status_code == 409
    assert retry.json()["error"]["kind"] == "InvalidState"


def test_employee_verifies_reports_and_submits(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)
    task_id = _create_task(inventory_client, admin, "department_ids", ["7"]).json()["id"]
    emp1 = _login_employee(inventory_client, "emp1")
    emp2 = _login_employee(inventory_client, "emp2")

    active = inventory_client.get("/api/employee/inventory/tasks", headers=emp1).json()
    assert [item["id"] for item in active] == [task_id]

    mine = inventory_client.get(f"/api/employee/inventory/tasks/{task_id}/items", headers=emp1).json()
    assert sorted(item["phone_number"] for item in mine) == ["13900000001", "13900000002"]

    early = inventory_client.post(f"/api/employee/inventory/tasks/{task_id}/submit", headers=emp1)
    assert early.status_code == 409
    assert early.json()["error"]["kind"] == "InvalidState"

    foreign = _act(inventory_client, emp2, task_id, mine[0]["id"], "confirm", prefix="/employee")
    assert foreign.status_code == 403
    for item in mine:
        assert _act(inventory_client, emp1, task_id, item["id"], "confirm", prefix="/employee").status_code == 200

    reports_path = f"/api/employee/inventory/tasks/{task_id}/unlisted-reports"
    reported = inventory_client.post(
        reports_path,
        json={"phone_number": "13800000000", "purpose": "personal"},
        headers=emp1,
    )
    assert reported.status_code == 201
    listed = inventory_client.post(reports_path, json={"phone_number": "13900000003"}, headers=emp1)
    assert listed.status_code == 409
    malformed = inventory_client.post(reports_path, json={"phone_number": "555"}, headers=emp1)
    assert malformed.status_code == 422

    submitted = inventory_client.post(f"/api/employee/inventory/tasks/{task_id}/submit", headers=emp1)
    assert submitted.status_code == 200
    resubmitted = inventory_client.post(f"/api/employee/inventory/tasks/{task_id}/submit", headers=emp1)
    assert resubmitted.status_code == 200
    assert resubmitted.json()["submitted_at"][:19] == submitted.json()["submitted_at"][:19]

    assert inventory_client.get("/api/employee/inventory/tasks", headers=emp1).json() == []

    task = inventory_client.get(f"/api/inventory/tasks/{task_id}", headers=admin).json()
    # Unlisted reports never count towards completion.
    assert task["status"] == "in_progress"
    assert task["summary"]["unlisted_reported"] == 1
    reports = inventory_client.get(f"/api/inventory/tasks/{task_id}/unlisted-reports", headers=admin).json()
    assert [item["phone_number"] for item in reports] == ["13800000000"]

    with Session(db.engine) as session:
        event_types = session.exec(select(EventRecord.event_type)).all()
    assert event_types.count("TaskSubmitted") == 1
    assert event_types.count("UnlistedPhoneReported") == 1


def test_close_task_is_idempotent_and_freezes_items(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)
    task_id = _create_task(inventory_client, admin, "department_ids", ["7"]).json()["id"]
    item = _items(inventory_client, admin, task_id)[0]

    closed = inventory_client.post(f"/api/inventory/tasks/{task_id}/close", headers=admin)
    assert closed.status_code == 200
    assert closed.json()["status"] == "closed"
    assert closed.json()["closed_at"] is not None
    again = inventory_client.post(f"/api/inventory/tasks/{task_id}/close", headers=admin)
    assert again.status_code == 200
    assert again.json()["closed_at"][:19] == closed.json()["closed_at"][:19]

    frozen = _act(inventory_client, admin, task_id, item["id"], "confirm")
    assert frozen.status_code == 409

    with Session(db.engine) as session:
        event_types = session.exec(select(EventRecord.event_type)).all()
    assert event_types.count("TaskClosed") == 1


def test_list_tasks_filters(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)
    first = _create_task(inventory_client, admin, "department_ids", ["7"]).json()
    inventory_client.post(
        "/api/inventory/tasks",
        json={"name": "support sweep", "due_at": _due(), "scope_type": "department_ids", "scope_values": ["8"]},
        headers=admin,
    )
    inventory_client.post(f"/api/inventory/tasks/{first['id']}/close", headers=admin)

    closed = inventory_client.get("/api/inventory/tasks", params={"status": "closed"}, headers=admin).json()
    assert [item["id"] for item in closed] == [first["id"]]
    sweep = inventory_client.get("/api/inventory/tasks", params={"keyword": "sweep"}, headers=admin).json()
    assert [item["name"] for item in sweep] == ["support sweep"]


def test_numeric_scope_values_and_malformed_bodies(inventory_client: TestClient) -> None:
    admin = _setup(inventory_client)

    created = inventory_client.post(
        "/api/inventory/tasks",
        json={"name": "numeric", "due_at": _due(), "scope_type": "department_ids", "scope_values": [7]},
        headers=admin,
    )
    assert created.status_code == 201
    assert created.json()["scope_values"] == ["7"]
    assert created.json()["summary"]["total"] == 3

    missing = inventory_client.post("/api/inventory/tasks", json={"name": "incomplete"}, headers=admin)
    assert missing.status_code == 422
    assert missing.json()["error"]["kind"] == "Validation"
    assert "due_at" in missing.json()["error"]["message"]

    bad_action = _act(inventory_client, admin, created.json()["id"], "missing-item", "approve")
    assert bad_action.status_code == 422
    assert bad_action.json()["error"]["kind"] == "Validation"
