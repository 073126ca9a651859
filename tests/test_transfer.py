from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, col, create_engine, select

from phone_assets import main as app_main
from phone_assets.domain.models import EventRecord, PhoneUsageRecord, TransferRequest
from phone_assets.infra import audit, db, events

PHONE = "13900000000"


@pytest.fixture()
def transfer_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "transfer_test.db"
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


def _setup(client: TestClient) -> dict[str, str]:
    """Seed three employees in department 7 and hand PHONE to emp1."""
    client.post("/api/identity/bootstrap-admin", json={"username": "root", "password": "root-pass"})
    login = client.post("/api/identity/login", json={"username": "root", "password": "root-pass"})
    admin = _auth_header(login.json()["access_token"])
    client.put("/api/directory/departments", json={"id": 7, "name": "sales"}, headers=admin)
    client.put("/api/directory/departments", json={"id": 8, "name": "support"}, headers=admin)
    for employee_id, department_id in [("emp1", 7), ("emp2", 8), ("emp3", 7)]:
        response = client.put(
            "/api/directory/employees",
            json={"id": employee_id, "name": employee_id, "department_id": department_id, "password": "pw"},
            headers=admin,
        )
        assert response.status_code == 200
    register = client.post(
        "/api/phones",
        json={
            "phone_number": PHONE,
            "applicant_employee_id": "emp1",
            "application_date": "2024-01-01",
            "vendor": "carrier-a",
        },
        headers=admin,
    )
    assert register.status_code == 201
    assign = client.post(
        f"/api/phones/{PHONE}/assign",
        json={"employee_id": "emp1", "purpose": "test", "assignment_date": "2024-01-01"},
        headers=admin,
    )
    assert assign.status_code == 200
    return admin


def _initiate(client: TestClient, headers: dict[str, str], to_employee_id: str):
    return client.post(
        f"/api/transfers/phones/{PHONE}",
        json={"to_employee_id": to_employee_id, "remark": "handover"},
        headers=headers,
    )


def test_pending_transfer_blocks_recover_until_rejected(transfer_client: TestClient) -> None:
    admin = _setup(transfer_client)
    emp1 = _login_employee(transfer_client, "emp1")
    emp2 = _login_employee(transfer_client, "emp2")

    initiated = _initiate(transfer_client, emp1, "emp2")
    assert initiated.status_code == 201
    request_id = initiated.json()["id"]
    assert initiated.json()["state"] == "pending"
    assert transfer_client.get(f"/api/phones/{PHONE}", headers=admin).json()["current_employee_id"] == "emp1"

    recover_path = f"/api/phones/{PHONE}/recover"
    blocked = transfer_client.post(recover_path, json={"reclaim_date": "2024-03-01"}, headers=admin)
    assert blocked.status_code == 409
    assert blocked.json()["error"]["kind"] == "Conflict"
    assert transfer_client.post(f"/api/phones/{PHONE}/suspend", headers=admin).status_code == 409

    rejected = transfer_client.post(f"/api/transfers/{request_id}/reject", headers=emp2)
    assert rejected.status_code == 200
    assert rejected.json()["state"] == "rejected"
    assert transfer_client.get(f"/api/phones/{PHONE}", headers=admin).json()["current_employee_id"] == "emp1"

    recovered = transfer_client.post(recover_path, json={"reclaim_date": "2024-03-01"}, headers=admin)
    assert recovered.status_code == 200
    assert recovered.json()["status"] == "idle"


def test_accept_swaps_usage_records_atomically(transfer_client: TestClient) -> None:
    admin = _setup(transfer_client)
    emp1 = _login_employee(transfer_client, "emp1")
    emp2 = _login_employee(transfer_client, "emp2")
    request_id = _initiate(transfer_client, emp1, "emp2").json()["id"]

    accepted = transfer_client.post(f"/api/transfers/{request_id}/accept", headers=emp2)
    assert accepted.status_code == 200
    assert accepted.json()["state"] == "accepted"
    assert accepted.json()["resolved_at"] is not None

    phone = transfer_client.get(f"/api/phones/{PHONE}", headers=admin).json()
    assert phone["status"] == "in_use"
    assert phone["current_employee_id"] == "emp2"
    assert phone["department_id"] == 8
    history = phone["usage_history"]
    assert [item["employee_id"] for item in history] == ["emp1", "emp2"]
    assert history[0]["end_date"] is not None
    assert history[1]["end_date"] is None
    assert history[0]["end_date"] == history[1]["start_date"]

    with Session(db.engine) as session:
        open_records = session.exec(
            select(PhoneUsageRecord)
            .where(PhoneUsageRecord.phone_number == PHONE)
            .where(col(PhoneUsageRecord.end_date).is_(None))
        ).all()
        row = session.get(TransferRequest, request_id)
        event_types = session.exec(select(EventRecord.event_type)).all()
    assert len(open_records) == 1
    assert row is not None and row.pending_phone_number is None
    assert "TransferInitiated" in event_types
    assert "TransferAccepted" in event_types

    again = transfer_client.post(f"/api/transfers/{request_id}/accept", headers=emp2)
    assert again.status_code == 409
    assert again.json()["error"]["kind"] == "InvalidState"


def test_only_one_pending_request_per_phone(transfer_client: TestClient) -> None:
    _setup(transfer_client)
    emp1 = _login_employee(transfer_client, "emp1")

    assert _initiate(transfer_client, emp1, "emp2").status_code == 201
    second = _initiate(transfer_client, emp1, "emp3")
    assert second.status_code == 409
    assert second.json()["error"]["kind"] == "Conflict"

    with Session(db.engine) as session:
        rows = session.exec(select(TransferRequest).where(TransferRequest.phone_number == PHONE)).all()
    assert len(rows) == 1


def test_only_recipient_resolves_and_only_holder_initiates(transfer_client: TestClient) -> None:
    _setup(transfer_client)
    emp1 = _login_employee(transfer_client, "emp1")
    emp3 = _login_employee(transfer_client, "emp3")

    not_holder = _initiate(transfer_client, emp3, "emp2")
    assert not_holder.status_code == 403

    request_id = _initiate(transfer_client, emp1, "emp2").json()["id"]
    for headers in (emp1, emp3):
        response = transfer_client.post(f"/api/transfers/{request_id}/accept", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"]["kind"] == "Forbidden"

    assert transfer_client.get(f"/api/transfers/{request_id}", headers=emp1).status_code == 200
    assert transfer_client.get(f"/api/transfers/{request_id}", headers=emp3).status_code == 404


def test_initiate_validates_recipient(transfer_client: TestClient) -> None:
    admin = _setup(transfer_client)
    emp1 = _login_employee(transfer_client, "emp1")

    to_self = _initiate(transfer_client, emp1, "emp1")
    assert to_self.status_code == 422
    unknown = _initiate(transfer_client, emp1, "nobody")
    assert unknown.status_code == 404

    transfer_client.put(
        "/api/directory/employees",
        json={"id": "emp3", "name": "emp3", "department_id": 7, "employment_status": "departed"},
        headers=admin,
    )
    departed = _initiate(transfer_client, emp1, "emp3")
    assert departed.status_code == 422
    assert departed.json()["error"]["kind"] == "Validation"


def test_transfer_lists_by_direction(transfer_client: TestClient) -> None:
    admin = _setup(transfer_client)
    emp1 = _login_employee(transfer_client, "emp1")
    emp2 = _login_employee(transfer_client, "emp2")
    request_id = _initiate(transfer_client, emp1, "emp2").json()["id"]

    incoming = transfer_client.get("/api/transfers", headers=emp2).json()
    outgoing = transfer_client.get("/api/transfers", params={"direction": "outgoing"}, headers=emp1).json()
    assert [item["id"] for item in incoming] == [request_id]
    assert [item["id"] for item in outgoing] == [request_id]
    assert transfer_client.get("/api/transfers", headers=emp1).json() == []

    by_phone = transfer_client.get(f"/api/phones/{PHONE}/transfers", headers=admin).json()
    assert [item["id"] for item in by_phone] == [request_id]


def test_future_dated_handout_is_rejected_so_same_day_transfer_accepts(transfer_client: TestClient) -> None:
    admin = _setup(transfer_client)
    other = "13900000009"
    transfer_client.post(
        "/api/phones",
        json={
            "phone_number": other,
            "applicant_employee_id": "emp1",
            "application_date": "2024-01-01",
            "vendor": "carrier-a",
        },
        headers=admin,
    )

    future = transfer_client.post(
        f"/api/phones/{other}/assign",
        json={"employee_id": "emp1", "purpose": "test", "assignment_date": "2099-01-01"},
        headers=admin,
    )
    assert future.status_code == 422
    assert future.json()["error"]["kind"] == "Validation"
    assert transfer_client.get(f"/api/phones/{other}", headers=admin).json()["status"] == "idle"

    today = datetime.now(UTC).date().isoformat()
    assigned = transfer_client.post(
        f"/api/phones/{other}/assign",
        json={"employee_id": "emp1", "purpose": "test", "assignment_date": today},
        headers=admin,
    )
    assert assigned.status_code == 200

    emp1 = _login_employee(transfer_client, "emp1")
    emp2 = _login_employee(transfer_client, "emp2")
    initiated = transfer_client.post(
        f"/api/transfers/phones/{other}",
        json={"to_employee_id": "emp2"},
        headers=emp1,
    )
    assert initiated.status_code == 201
    accepted = transfer_client.post(f"/api/transfers/{initiated.json()['id']}/accept", headers=emp2)
    assert accepted.status_code == 200

    history = transfer_client.get(f"/api/phones/{other}", headers=admin).json()["usage_history"]
    assert [item["employee_id"] for item in history] == ["emp1", "emp2"]
    assert history[0]["start_date"] == history[0]["end_date"] == history[1]["start_date"]

    late_reclaim = transfer_client.post(
        f"/api/phones/{other}/recover",
        json={"reclaim_date": "2099-01-01"},
        headers=admin,
    )
    assert late_reclaim.status_code == 422
