from __future__ import annotations

import threading
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from phone_assets.domain.actors import Actor
from phone_assets.domain.errors import ConflictError, InvalidStateError
from phone_assets.domain.models import (
    Department,
    Employee,
    EventRecord,
    InventoryItemActionRequest,
    InventoryScopeType,
    InventoryTaskCreate,
    PhoneAssignRequest,
    PhoneRegisterRequest,
    PhoneUsageRecord,
)
from phone_assets.domain.permissions import build_principal
from phone_assets.domain.state_machine import InventoryItemAction
from phone_assets.infra import audit, db, events
from phone_assets.infra.locks import MemoryKeyLocker, phone_key
from phone_assets.services import inventory_service
from phone_assets.services.inventory_service import InventoryService
from phone_assets.services.phone_service import PhoneService


def test_second_holder_times_out() -> None:
    locker = MemoryKeyLocker()
    key = phone_key("13900000000")

    with locker.hold(key, timeout=1):
        assert locker.active_keys() == {key}
        failures: list[Exception] = []

        def contend() -> None:
            try:
                with locker.hold(key, timeout=0.05):
                    pass
            except ConflictError as exc:
                failures.append(exc)

        worker = threading.Thread(target=contend)
        worker.start()
        worker.join()

    assert len(failures) == 1
    assert locker.active_keys() == set()


def _seed(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'locks_test.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)

    with Session(test_engine) as session:
        session.add(Department(id=7, name="sales"))
        session.add(Employee(id="emp1", name="emp1", department_id=7))
        session.add(Employee(id="emp2", name="emp2", department_id=7))
        session.commit()

    actor = Actor.admin(build_principal("root", is_super_admin=True, grants=()))
    service = PhoneService()
    service.register_asset(
        actor,
        PhoneRegisterRequest(
            phone_number="13900000000",
            applicant_employee_id="emp1",
            application_date=date(2024, 1, 1),
            vendor="carrier-a",
        ),
    )
    return test_engine, actor, service


def test_concurrent_assign_has_single_winner(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    test_engine, actor, service = _seed(monkeypatch, tmp_path)

    barrier = threading.Barrier(2)
    winners: list[str] = []
    losers: list[Exception] = []

    def assign(employee_id: str) -> None:
        barrier.wait()
        try:
            service.assign(
                actor,
                "13900000000",
                PhoneAssignRequest(employee_id=employee_id, purpose="field", assignment_date=date(2024, 1, 2)),
            )
            winners.append(employee_id)
        except InvalidStateError as exc:
            losers.append(exc)

    threads = [threading.Thread(target=assign, args=(employee_id,)) for employee_id in ("emp1", "emp2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(losers) == 1
    with Session(test_engine) as session:
        records = session.exec(select(PhoneUsageRecord)).all()
    assert [record.employee_id for record in records] == winners


def test_close_waits_for_item_action_in_flight(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    test_engine, actor, service = _seed(monkeypatch, tmp_path)
    service.assign(
        actor,
        "13900000000",
        PhoneAssignRequest(employee_id="emp1", purpose="field", assignment_date=date(2024, 1, 2)),
    )
    inventory = InventoryService()
    task = inventory.create_task(
        actor,
        InventoryTaskCreate(
            name="audit",
            due_at=datetime.now(UTC) + timedelta(days=7),
            scope_type=InventoryScopeType.DEPARTMENT_IDS,
            scope_values=[7],
        ),
    )
    item = inventory.list_task_items(actor, task.id)[0]

    closed: list[str] = []
    close_blocked: list[bool] = []
    original_check = inventory_service.can_apply_item_action

    def close_in_background() -> None:
        closed.append(inventory.close_task(actor, task.id).status)

    closer = threading.Thread(target=close_in_background)

    def check_while_closing(status, action) -> bool:
        closer.start()
        closer.join(timeout=0.2)
        close_blocked.append(closer.is_alive())
        return original_check(status, action)

    monkeypatch.setattr(inventory_service, "can_apply_item_action", check_while_closing)

    updated = inventory.perform_item_action(
        actor,
        task.id,
        item.id,
        InventoryItemActionRequest(action=InventoryItemAction.CONFIRM),
    )
    closer.join()

    assert close_blocked == [True]
    assert updated.status == "confirmed"
    assert closed == ["closed"]
    with Session(test_engine) as session:
        closed_event = session.exec(select(EventRecord).where(EventRecord.event_type == "TaskClosed")).one()
    assert closed_event.payload["summary"]["confirmed"] == 1
    assert closed_event.payload["summary"]["pending"] == 0
