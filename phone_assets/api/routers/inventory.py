from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from phone_assets.api.deps import AdminActor
from phone_assets.domain.models import (
    InventoryItemActionRequest,
    InventoryScopeType,
    InventoryTaskCreate,
    InventoryTaskItemRead,
    InventoryTaskRead,
    UnlistedPhoneReportRead,
)
from phone_assets.domain.state_machine import InventoryItemStatus, InventoryTaskStatus
from phone_assets.infra.audit import set_audit_context
from phone_assets.services.inventory_service import InventoryService

router = APIRouter()


def get_inventory_service() -> InventoryService:
    return InventoryService()


Service = Annotated[InventoryService, Depends(get_inventory_service)]


@router.post("/tasks", response_model=InventoryTaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: InventoryTaskCreate,
    request: Request,
    actor: AdminActor,
    service: Service,
) -> InventoryTaskRead:
    set_audit_context(
        request,
        action="inventory.task.create",
        detail={"what": {"scope_type": payload.scope_type, "scope_values": payload.scope_values}},
    )
    return service.create_task(actor, payload)


@router.get("/tasks", response_model=list[InventoryTaskRead])
def list_tasks(
    actor: AdminActor,
    service: Service,
    status_filter: Annotated[InventoryTaskStatus | None, Query(alias="status")] = None,
    scope_type: InventoryScopeType | None = None,
    keyword: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> list[InventoryTaskRead]:
    return service.list_tasks(
        actor,
        status=status_filter,
        scope_type=scope_type,
        keyword=keyword,
        created_from=created_from,
        created_to=created_to,
    )


@router.get("/tasks/{task_id}", response_model=InventoryTaskRead)
def get_task(task_id: str, actor: AdminActor, service: Service) -> InventoryTaskRead:
    return service.get_task(actor, task_id)


@router.get("/tasks/{task_id}/items", response_model=list[InventoryTaskItemRead])
def list_task_items(
    task_id: str,
    actor: AdminActor,
    service: Service,
    status_filter: Annotated[InventoryItemStatus | None, Query(alias="status")] = None,
    employee_id: str | None = None,
    department_id: int | None = None,
) -> list[InventoryTaskItemRead]:
    return service.list_task_items(
        actor,
        task_id,
        status=status_filter,
        employee_id=employee_id,
        department_id=department_id,
    )


@router.post("/tasks/{task_id}/items/{item_id}/action", response_model=InventoryTaskItemRead)
def perform_item_action(
    task_id: str,
    item_id: str,
    payload: InventoryItemActionRequest,
    request: Request,
    actor: AdminActor,
    service: Service,
) -> InventoryTaskItemRead:
    set_audit_context(
        request,
        action="inventory.item.action",
        detail={"what": {"task_id": task_id, "item_id": item_id, "action": payload.action}},
    )
    return service.perform_item_action(actor, task_id, item_id, payload)


@router.post("/tasks/{task_id}/close", response_model=InventoryTaskRead)
def close_task(task_id: str, request: Request, actor: AdminActor, service: Service) -> InventoryTaskRead:
    set_audit_context(request, action="inventory.task.close", detail={"what": {"task_id": task_id}})
    return service.close_task(actor, task_id)


@router.get("/tasks/{task_id}/unlisted-reports", response_model=list[UnlistedPhoneReportRead])
def list_unlisted_reports(task_id: str, actor: AdminActor, service: Service) -> list[UnlistedPhoneReportRead]:
    return service.list_unlisted_reports(actor, task_id)
