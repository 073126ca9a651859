"""Self-service endpoints for the employee holding a phone."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from phone_assets.api.deps import EmployeeActor
from phone_assets.domain.models import (
    InventoryItemActionRequest,
    InventorySubmissionRead,
    InventoryTaskItemRead,
    InventoryTaskRead,
    PhoneRead,
    UnlistedPhoneReportRead,
    UnlistedPhoneReportRequest,
)
from phone_assets.domain.state_machine import DeactivationInitiator, InventoryItemStatus, RiskReason
from phone_assets.infra.audit import set_audit_context
from phone_assets.services.inventory_service import InventoryService
from phone_assets.services.phone_service import PhoneService

router = APIRouter()


def get_phone_service() -> PhoneService:
    return PhoneService()


def get_inventory_service() -> InventoryService:
    return InventoryService()


Phones = Annotated[PhoneService, Depends(get_phone_service)]
Inventory = Annotated[InventoryService, Depends(get_inventory_service)]


@router.get("/phones", response_model=list[PhoneRead])
def my_phones(actor: EmployeeActor, phones: Phones) -> list[PhoneRead]:
    return phones.list_employee_assets(actor.id)


@router.get("/phones/{phone_number}", response_model=PhoneRead)
def my_phone(phone_number: str, actor: EmployeeActor, phones: Phones) -> PhoneRead:
    return phones.get_asset(actor, phone_number)


@router.post("/phones/{phone_number}/deactivation", response_model=PhoneRead)
def request_deactivation(phone_number: str, request: Request, actor: EmployeeActor, phones: Phones) -> PhoneRead:
    set_audit_context(request, action="employee.phone.deactivation", detail={"what": {"phone_number": phone_number}})
    return phones.request_deactivation(actor, phone_number, DeactivationInitiator.USER)


@router.post("/phones/{phone_number}/report", response_model=PhoneRead)
def report_phone(phone_number: str, request: Request, actor: EmployeeActor, phones: Phones) -> PhoneRead:
    set_audit_context(request, action="employee.phone.report", detail={"what": {"phone_number": phone_number}})
    return phones.flag_risk(actor, phone_number, RiskReason.USER_REPORTED)


@router.get("/inventory/tasks", response_model=list[InventoryTaskRead])
def my_active_tasks(actor: EmployeeActor, inventory: Inventory) -> list[InventoryTaskRead]:
    return inventory.list_employee_active_tasks(actor.id)


@router.get("/inventory/tasks/{task_id}", response_model=InventoryTaskRead)
def my_task(task_id: str, actor: EmployeeActor, inventory: Inventory) -> InventoryTaskRead:
    return inventory.get_task(actor, task_id)


@router.get("/inventory/tasks/{task_id}/items", response_model=list[InventoryTaskItemRead])
def my_task_items(
    task_id: str,
    actor: EmployeeActor,
    inventory: Inventory,
    status_filter: Annotated[InventoryItemStatus | None, Query(alias="status")] = None,
) -> list[InventoryTaskItemRead]:
    return inventory.list_task_items(actor, task_id, status=status_filter)


@router.post("/inventory/tasks/{task_id}/items/{item_id}/action", response_model=InventoryTaskItemRead)
def act_on_item(
    task_id: str,
    item_id: str,
    payload: InventoryItemActionRequest,
    request: Request,
    actor: EmployeeActor,
    inventory: Inventory,
) -> InventoryTaskItemRead:
    set_audit_context(
        request,
        action="employee.inventory.item.action",
        detail={"what": {"task_id": task_id, "item_id": item_id, "action": payload.action}},
    )
    return inventory.perform_item_action(actor, task_id, item_id, payload)


@router.post(
    "/inventory/tasks/{task_id}/unlisted-reports",
    response_model=UnlistedPhoneReportRead,
    status_code=status.HTTP_201_CREATED,
)
def report_unlisted_phone(
    task_id: str,
    payload: UnlistedPhoneReportRequest,
    request: Request,
    actor: EmployeeActor,
    inventory: Inventory,
) -> UnlistedPhoneReportRead:
    set_audit_context(
        request,
        action="employee.inventory.unlisted_report",
        detail={"what": {"task_id": task_id, "phone_number": payload.phone_number}},
    )
    return inventory.report_unlisted_phone(actor, task_id, payload)


@router.get("/inventory/tasks/{task_id}/unlisted-reports", response_model=list[UnlistedPhoneReportRead])
def my_unlisted_reports(task_id: str, actor: EmployeeActor, inventory: Inventory) -> list[UnlistedPhoneReportRead]:
    return inventory.list_unlisted_reports(actor, task_id)


@router.post("/inventory/tasks/{task_id}/submit", response_model=InventorySubmissionRead)
def submit_task(task_id: str, request: Request, actor: EmployeeActor, inventory: Inventory) -> InventorySubmissionRead:
    set_audit_context(request, action="employee.inventory.submit", detail={"what": {"task_id": task_id}})
    return inventory.submit_task(actor, task_id)
