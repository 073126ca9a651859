from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from phone_assets.api.deps import AnyActor, EmployeeActor
from phone_assets.domain.models import TransferDirection, TransferInitiateRequest, TransferRead
from phone_assets.domain.state_machine import TransferState
from phone_assets.infra.audit import set_audit_context
from phone_assets.services.transfer_service import TransferService

router = APIRouter()


def get_transfer_service() -> TransferService:
    return TransferService()


Service = Annotated[TransferService, Depends(get_transfer_service)]


@router.post("/phones/{phone_number}", response_model=TransferRead, status_code=status.HTTP_201_CREATED)
def initiate_transfer(
    phone_number: str,
    payload: TransferInitiateRequest,
    request: Request,
    actor: EmployeeActor,
    service: Service,
) -> TransferRead:
    set_audit_context(
        request,
        action="transfer.initiate",
        detail={"what": {"phone_number": phone_number, "to_employee_id": payload.to_employee_id}},
    )
    return service.initiate(actor, phone_number, payload)


@router.get("", response_model=list[TransferRead])
def list_transfers(
    actor: EmployeeActor,
    service: Service,
    direction: TransferDirection = TransferDirection.INCOMING,
    state: Annotated[TransferState | None, Query()] = None,
) -> list[TransferRead]:
    return service.list_transfer_requests(actor, direction=direction, state=state)


@router.get("/{request_id}", response_model=TransferRead)
def get_transfer(request_id: str, actor: AnyActor, service: Service) -> TransferRead:
    return service.get_transfer_request(actor, request_id)


@router.post("/{request_id}/accept", response_model=TransferRead)
def accept_transfer(request_id: str, request: Request, actor: EmployeeActor, service: Service) -> TransferRead:
    set_audit_context(request, action="transfer.accept", detail={"what": {"request_id": request_id}})
    return service.accept(actor, request_id)


@router.post("/{request_id}/reject", response_model=TransferRead)
def reject_transfer(request_id: str, request: Request, actor: EmployeeActor, service: Service) -> TransferRead:
    set_audit_context(request, action="transfer.reject", detail={"what": {"request_id": request_id}})
    return service.reject(actor, request_id)
