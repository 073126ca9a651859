from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status

from phone_assets.api.deps import AdminActor
from phone_assets.domain.models import (
    EmploymentStatus,
    PhoneAssignRequest,
    PhoneDeactivationRequest,
    PhoneRead,
    PhoneRecoverRequest,
    PhoneRegisterRequest,
    PhoneRiskRequest,
    PhoneUpdateRequest,
    TransferRead,
)
from phone_assets.domain.state_machine import PhoneStatus
from phone_assets.infra.audit import set_audit_context
from phone_assets.services.phone_service import PhoneService
from phone_assets.services.transfer_service import TransferService

router = APIRouter()


def get_phone_service() -> PhoneService:
    return PhoneService()


def get_transfer_service() -> TransferService:
    return TransferService()


Service = Annotated[PhoneService, Depends(get_phone_service)]
Transfers = Annotated[TransferService, Depends(get_transfer_service)]


@router.post("", response_model=PhoneRead, status_code=status.HTTP_201_CREATED)
def register_phone(payload: PhoneRegisterRequest, request: Request, actor: AdminActor, service: Service) -> PhoneRead:
    set_audit_context(
        request,
        action="phone.register",
        detail={"what": {"phone_number": payload.phone_number, "applicant": payload.applicant_employee_id}},
    )
    return service.register_asset(actor, payload)


@router.get("", response_model=list[PhoneRead])
def list_phones(
    actor: AdminActor,
    service: Service,
    status_filter: Annotated[PhoneStatus | None, Query(alias="status")] = None,
    department_id: int | None = None,
    employee_id: str | None = None,
    vendor: str | None = None,
    applicant_status: EmploymentStatus | None = None,
    keyword: str | None = None,
) -> list[PhoneRead]:
    return service.list_assets(
        actor,
        status=status_filter,
        department_id=department_id,
        employee_id=employee_id,
        vendor=vendor,
        applicant_status=applicant_status,
        keyword=keyword,
    )


@router.post("/risk-scan", response_model=list[PhoneRead])
def scan_departed_applicants(request: Request, actor: AdminActor, service: Service) -> list[PhoneRead]:
    set_audit_context(request, action="phone.risk_scan")
    return service.scan_departed_applicants(actor)


@router.get("/{phone_number}", response_model=PhoneRead)
def get_phone(phone_number: str, actor: AdminActor, service: Service) -> PhoneRead:
    return service.get_asset(actor, phone_number)


@router.patch("/{phone_number}", response_model=PhoneRead)
def update_phone(
    phone_number: str,
    payload: PhoneUpdateRequest,
    request: Request,
    actor: AdminActor,
    service: Service,
) -> PhoneRead:
    set_audit_context(
        request,
        action="phone.update",
        detail={"what": {"phone_number": phone_number, "fields": sorted(payload.model_fields_set)}},
    )
    return service.update_asset(actor, phone_number, payload)


@router.delete("/{phone_number}", status_code=status.HTTP_204_NO_CONTENT)
def delete_phone(phone_number: str, request: Request, actor: AdminActor, service: Service) -> Response:
    set_audit_context(request, action="phone.delete", detail={"what": {"phone_number": phone_number}})
    service.delete_asset(actor, phone_number)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{phone_number}/assign", response_model=PhoneRead)
def assign_phone(
    phone_number: str,
    payload: PhoneAssignRequest,
    request: Request,
    actor: AdminActor,
    service: Service,
) -> PhoneRead:
    set_audit_context(
        request,
        action="phone.assign",
        detail={"what": {"phone_number": phone_number, "employee_id": payload.employee_id}},
    )
    return service.assign(actor, phone_number, payload)


@router.post("/{phone_number}/recover", response_model=PhoneRead)
def recover_phone(
    phone_number: str,
    payload: PhoneRecoverRequest,
    request: Request,
    actor: AdminActor,
    service: Service,
) -> PhoneRead:
    set_audit_context(request, action="phone.recover", detail={"what": {"phone_number": phone_number}})
    return service.recover(actor, phone_number, payload)


@router.post("/{phone_number}/deactivation", response_model=PhoneRead)
def request_deactivation(
    phone_number: str,
    payload: PhoneDeactivationRequest,
    request: Request,
    actor: AdminActor,
    service: Service,
) -> PhoneRead:
    set_audit_context(
        request,
        action="phone.deactivation.request",
        detail={"what": {"phone_number": phone_number, "initiator": payload.initiator}},
    )
    return service.request_deactivation(actor, phone_number, payload.initiator)


@router.post("/{phone_number}/deactivation/finalize", response_model=PhoneRead)
def finalize_deactivation(phone_number: str, request: Request, actor: AdminActor, service: Service) -> PhoneRead:
    set_audit_context(request, action="phone.deactivation.finalize", detail={"what": {"phone_number": phone_number}})
    return service.finalize_deactivation(actor, phone_number)


@router.post("/{phone_number}/risk", response_model=PhoneRead)
def flag_risk(
    phone_number: str,
    payload: PhoneRiskRequest,
    request: Request,
    actor: AdminActor,
    service: Service,
) -> PhoneRead:
    set_audit_context(
        request,
        action="phone.risk.flag",
        detail={"what": {"phone_number": phone_number, "reason": payload.reason}},
    )
    return service.flag_risk(actor, phone_number, payload.reason)


@router.post("/{phone_number}/risk/clear", response_model=PhoneRead)
def clear_risk(phone_number: str, request: Request, actor: AdminActor, service: Service) -> PhoneRead:
    set_audit_context(request, action="phone.risk.clear", detail={"what": {"phone_number": phone_number}})
    return service.clear_risk(actor, phone_number)


@router.post("/{phone_number}/suspend", response_model=PhoneRead)
def suspend_phone(phone_number: str, request: Request, actor: AdminActor, service: Service) -> PhoneRead:
    set_audit_context(request, action="phone.suspend", detail={"what": {"phone_number": phone_number}})
    return service.suspend(actor, phone_number)


@router.post("/{phone_number}/resume", response_model=PhoneRead)
def resume_phone(phone_number: str, request: Request, actor: AdminActor, service: Service) -> PhoneRead:
    set_audit_context(request, action="phone.resume", detail={"what": {"phone_number": phone_number}})
    return service.resume(actor, phone_number)


@router.post("/{phone_number}/card-replacement/start", response_model=PhoneRead)
def start_card_replacement(phone_number: str, request: Request, actor: AdminActor, service: Service) -> PhoneRead:
    set_audit_context(request, action="phone.card_replacement.start", detail={"what": {"phone_number": phone_number}})
    return service.start_card_replacement(actor, phone_number)


@router.post("/{phone_number}/card-replacement/finish", response_model=PhoneRead)
def finish_card_replacement(phone_number: str, request: Request, actor: AdminActor, service: Service) -> PhoneRead:
    set_audit_context(request, action="phone.card_replacement.finish", detail={"what": {"phone_number": phone_number}})
    return service.finish_card_replacement(actor, phone_number)


@router.get("/{phone_number}/transfers", response_model=list[TransferRead])
def list_phone_transfers(phone_number: str, actor: AdminActor, transfers: Transfers) -> list[TransferRead]:
    return transfers.list_phone_transfers(actor, phone_number)
