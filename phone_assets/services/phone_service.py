from __future__ import annotations

from datetime import date
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from phone_assets.domain.actors import Actor
from phone_assets.domain.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from phone_assets.domain.models import (
    Employee,
    EmploymentStatus,
    PhoneAsset,
    PhoneAssignRequest,
    PhoneRead,
    PhoneRecoverRequest,
    PhoneRegisterRequest,
    PhoneUpdateRequest,
    PhoneUsageRecord,
    TransferRequest,
    UsageRecordRead,
    is_valid_phone_number,
)
from phone_assets.domain.permissions import (
    ALL_DEPARTMENTS,
    Principal,
    can_manage,
    can_view,
    managed_department_ids,
    viewable_department_ids,
)
from phone_assets.domain.state_machine import (
    DEACTIVATION_TARGETS,
    FINALIZABLE_STATES,
    RECOVERABLE_STATES,
    RISK_STATES,
    RISK_TARGETS,
    DeactivationInitiator,
    PhoneStatus,
    RiskReason,
    TransferState,
    can_transition,
)
from phone_assets.infra.clock import Clock, get_clock
from phone_assets.infra.db import get_engine
from phone_assets.infra.events import DomainEvent, event_bus
from phone_assets.infra.locks import hold_keys, phone_key
from phone_assets.services.directory_service import load_employee

logger = structlog.get_logger(__name__)


class PhoneService:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or get_clock()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    # -- helpers shared with the transfer and inventory services --

    def get_asset_row(self, session: Session, phone_number: str, *, for_update: bool = False) -> PhoneAsset:
        statement = select(PhoneAsset).where(PhoneAsset.phone_number == phone_number)
        if for_update:
            statement = statement.with_for_update()
        asset = session.exec(statement).first()
        if asset is None:
            raise NotFoundError(f"phone not found: {phone_number}")
        return asset

    def pending_transfer(self, session: Session, phone_number: str) -> TransferRequest | None:
        return session.exec(
            select(TransferRequest)
            .where(TransferRequest.phone_number == phone_number)
            .where(TransferRequest.state == TransferState.PENDING)
        ).first()

    def ensure_no_pending_transfer(self, session: Session, phone_number: str) -> None:
        if self.pending_transfer(session, phone_number) is not None:
            raise ConflictError(f"phone {phone_number} has a pending transfer request")

    def open_usage_records(self, session: Session, phone_number: str) -> list[PhoneUsageRecord]:
        return list(
            session.exec(
                select(PhoneUsageRecord)
                .where(PhoneUsageRecord.phone_number == phone_number)
                .where(col(PhoneUsageRecord.end_date).is_(None))
            ).all()
        )

    def close_usage(self, session: Session, phone_number: str, end_date: date) -> PhoneUsageRecord | None:
        open_records = self.open_usage_records(session, phone_number)
        if len(open_records) > 1:
            raise ConflictError(f"phone {phone_number} has more than one open usage record")
        if not open_records:
            return None
        record = open_records[0]
        if end_date < record.start_date:
            raise ValidationError("end date precedes the start of the current usage")
        record.end_date = end_date
        session.add(record)
        return record

    def open_usage(self, session: Session, phone_number: str, employee_id: str, start_date: date) -> PhoneUsageRecord:
        if self.open_usage_records(session, phone_number):
            raise ConflictError(f"phone {phone_number} already has an open usage record")
        record = PhoneUsageRecord(phone_number=phone_number, employee_id=employee_id, start_date=start_date)
        session.add(record)
        return record

    def derive_department(self, session: Session, asset: PhoneAsset) -> int | None:
        holder_id = asset.current_employee_id or asset.applicant_employee_id
        employee = session.get(Employee, holder_id)
        return employee.department_id if employee is not None else asset.department_id

    def to_read(self, session: Session, asset: PhoneAsset) -> PhoneRead:
        history = session.exec(
            select(PhoneUsageRecord)
            .where(PhoneUsageRecord.phone_number == asset.phone_number)
            .order_by(col(PhoneUsageRecord.start_date), col(PhoneUsageRecord.created_at))
        ).all()
        payload = asset.model_dump()
        payload["usage_history"] = [UsageRecordRead.model_validate(item) for item in history]
        return PhoneRead.model_validate(payload)

    def _touch(self, asset: PhoneAsset) -> None:
        asset.updated_at = self._clock.now()

    def _require_admin(self, actor: Actor) -> Principal:
        if not actor.is_admin or actor.principal is None:
            raise ForbiddenError("administrator required")
        return actor.principal

    def _require_manage(self, actor: Actor, department_id: int | None) -> Principal:
        principal = self._require_admin(actor)
        if not can_manage(principal, department_id):
            raise ForbiddenError("manage permission required")
        return principal

    def _ensure_transition(self, asset: PhoneAsset, target: PhoneStatus, operation: str) -> None:
        if not can_transition(asset.status, target):
            raise InvalidStateError(f"cannot {operation} phone in status {asset.status}")

    def _ensure_visible(self, actor: Actor, asset: PhoneAsset) -> None:
        if actor.is_employee:
            if asset.current_employee_id != actor.id:
                raise NotFoundError(f"phone not found: {asset.phone_number}")
            return
        principal = self._require_admin(actor)
        if not can_view(principal, asset.department_id):
            raise NotFoundError(f"phone not found: {asset.phone_number}")

    def _publish_status(self, event: DomainEvent, asset: PhoneRead, source: PhoneStatus, **extra: Any) -> None:
        payload: dict[str, Any] = {
            "phone_number": asset.phone_number,
            "from_status": source,
            "status": asset.status,
            "current_employee_id": asset.current_employee_id,
            "department_id": asset.department_id,
        }
        payload.update(extra)
        event_bus.publish_dict(event, payload)

    # -- queries --

    def get_asset(self, actor: Actor, phone_number: str) -> PhoneRead:
        with self._session() as session:
            asset = self.get_asset_row(session, phone_number)
            self._ensure_visible(actor, asset)
            return self.to_read(session, asset)

    def list_assets(
        self,
        actor: Actor,
        *,
        status: PhoneStatus | None = None,
        department_id: int | None = None,
        employee_id: str | None = None,
        vendor: str | None = None,
        applicant_status: EmploymentStatus | None = None,
        keyword: str | None = None,
    ) -> list[PhoneRead]:
        principal = self._require_admin(actor)
        with self._session() as session:
            statement = select(PhoneAsset)
            viewable = viewable_department_ids(principal)
            if viewable is not ALL_DEPARTMENTS:
                if not viewable:
                    return []
                statement = statement.where(col(PhoneAsset.department_id).in_(sorted(viewable)))
            if status is not None:
                statement = statement.where(PhoneAsset.status == status)
            if department_id is not None:
                statement = statement.where(PhoneAsset.department_id == department_id)
            if employee_id is not None:
                statement = statement.where(PhoneAsset.current_employee_id == employee_id)
            if vendor is not None:
                statement = statement.where(PhoneAsset.vendor == vendor)
            if applicant_status is not None:
                statement = statement.where(PhoneAsset.applicant_status_snapshot == applicant_status)
            if keyword:
                pattern = f"%{keyword.strip()}%"
                statement = statement.where(
                    or_(
                        col(PhoneAsset.phone_number).like(pattern),
                        col(PhoneAsset.purpose).like(pattern),
                        col(PhoneAsset.remarks).like(pattern),
                    )
                )
            rows = session.exec(statement.order_by(col(PhoneAsset.phone_number))).all()
            return [self.to_read(session, row) for row in rows]

    def list_employee_assets(self, employee_id: str) -> list[PhoneRead]:
        with self._session() as session:
            load_employee(session, employee_id)
            rows = session.exec(
                select(PhoneAsset)
                .where(PhoneAsset.current_employee_id == employee_id)
                .order_by(col(PhoneAsset.phone_number))
            ).all()
            return [self.to_read(session, row) for row in rows]

    # -- registration --

    def register_asset(self, actor: Actor, payload: PhoneRegisterRequest) -> PhoneRead:
        phone_number = payload.phone_number.strip()
        if not is_valid_phone_number(phone_number):
            raise ValidationError(f"invalid phone number: {payload.phone_number}")
        if not payload.vendor.strip():
            raise ValidationError("vendor is required")
        with hold_keys(phone_key(phone_number)), self._session() as session:
            applicant = load_employee(session, payload.applicant_employee_id)
            self._require_manage(actor, applicant.department_id)
            now = self._clock.now()
            asset = PhoneAsset(
                phone_number=phone_number,
                status=PhoneStatus.IDLE,
                applicant_employee_id=applicant.id,
                applicant_status_snapshot=applicant.employment_status,
                vendor=payload.vendor.strip(),
                purpose=payload.purpose,
                remarks=payload.remarks,
                department_id=applicant.department_id,
                application_date=payload.application_date,
                created_at=now,
                updated_at=now,
            )
            session.add(asset)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"phone already registered: {phone_number}") from exc
            read = self.to_read(session, asset)

        logger.info("phone.registered", phone_number=phone_number, department_id=read.department_id)
        event_bus.publish_dict(
            DomainEvent.ASSET_REGISTERED,
            {"phone_number": phone_number, "applicant_employee_id": read.applicant_employee_id},
        )
        return read

    def update_asset(self, actor: Actor, phone_number: str, payload: PhoneUpdateRequest) -> PhoneRead:
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self.get_asset_row(session, phone_number, for_update=True)
            self._require_manage(actor, asset.department_id)
            if payload.vendor is not None:
                if not payload.vendor.strip():
                    raise ValidationError("vendor is required")
                asset.vendor = payload.vendor.strip()
            if payload.purpose is not None:
                asset.purpose = payload.purpose
            if payload.remarks is not None:
                asset.remarks = payload.remarks
            self._touch(asset)
            session.add(asset)
            session.commit()
            return self.to_read(session, asset)

    # -- lifecycle transitions --

    def assign(self, actor: Actor, phone_number: str, payload: PhoneAssignRequest) -> PhoneRead:
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self.get_asset_row(session, phone_number, for_update=True)
            employee = load_employee(session, payload.employee_id)
            self._require_manage(actor, employee.department_id)
            self.ensure_no_pending_transfer(session, phone_number)
            if asset.status != PhoneStatus.IDLE:
                raise InvalidStateError(f"cannot assign phone in status {asset.status}")
            if employee.employment_status != EmploymentStatus.ACTIVE:
                raise ValidationError(f"employee {employee.id} is not active")
            if payload.assignment_date > self._clock.now().date():
                raise ValidationError("assignment date cannot be in the future")

            source = asset.status
            self.open_usage(session, phone_number, employee.id, payload.assignment_date)
            asset.status = PhoneStatus.IN_USE
            asset.current_employee_id = employee.id
            asset.purpose = payload.purpose
            asset.department_id = employee.department_id
            self._touch(asset)
            session.add(asset)
            session.commit()
            read = self.to_read(session, asset)

        logger.info("phone.assigned", phone_number=phone_number, employee_id=employee.id)
        self._publish_status(DomainEvent.ASSET_ASSIGNED, read, source, assignment_date=str(payload.assignment_date))
        return read

    def recover(self, actor: Actor, phone_number: str, payload: PhoneRecoverRequest) -> PhoneRead:
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self.get_asset_row(session, phone_number, for_update=True)
            self._require_manage(actor, asset.department_id)
            self.ensure_no_pending_transfer(session, phone_number)
            if asset.status not in RECOVERABLE_STATES:
                raise InvalidStateError(f"cannot recover phone in status {asset.status}")
            if payload.reclaim_date > self._clock.now().date():
                raise ValidationError("reclaim date cannot be in the future")

            source = asset.status
            previous_holder = asset.current_employee_id
            self.close_usage(session, phone_number, payload.reclaim_date)
            asset.status = PhoneStatus.IDLE
            asset.current_employee_id = None
            asset.department_id = self.derive_department(session, asset)
            self._touch(asset)
            session.add(asset)
            session.commit()
            read = self.to_read(session, asset)

        logger.info("phone.recovered", phone_number=phone_number, previous_employee_id=previous_holder)
        self._publish_status(
            DomainEvent.ASSET_RECOVERED,
            read,
            source,
            previous_employee_id=previous_holder,
            reclaim_date=str(payload.reclaim_date),
        )
        return read

    def request_deactivation(
        self,
        actor: Actor,
        phone_number: str,
        initiator: DeactivationInitiator,
    ) -> PhoneRead:
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self.get_asset_row(session, phone_number, for_update=True)
            if actor.is_employee:
                if initiator != DeactivationInitiator.USER or asset.current_employee_id != actor.id:
                    raise ForbiddenError("only the current holder may request deactivation")
            else:
                self._require_manage(actor, asset.department_id)
            self.ensure_no_pending_transfer(session, phone_number)

            target = DEACTIVATION_TARGETS[initiator]
            if asset.status == target:
                return self.to_read(session, asset)
            self._ensure_transition(asset, target, "request deactivation for")

            source = asset.status
            asset.status = target
            self._touch(asset)
            session.add(asset)
            session.commit()
            read = self.to_read(session, asset)

        logger.info("phone.deactivation_requested", phone_number=phone_number, initiator=initiator)
        self._publish_status(DomainEvent.ASSET_STATUS_CHANGED, read, source, initiator=initiator)
        return read

    def finalize_deactivation(self, actor: Actor, phone_number: str) -> PhoneRead:
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self.get_asset_row(session, phone_number, for_update=True)
            self._require_manage(actor, asset.department_id)
            self.ensure_no_pending_transfer(session, phone_number)
            if asset.status not in FINALIZABLE_STATES:
                raise InvalidStateError(f"cannot finalize deactivation of phone in status {asset.status}")

            source = asset.status
            today = self._clock.now().date()
            self.close_usage(session, phone_number, today)
            asset.status = PhoneStatus.DEACTIVATED
            asset.current_employee_id = None
            asset.cancellation_date = today
            asset.department_id = self.derive_department(session, asset)
            self._touch(asset)
            session.add(asset)
            session.commit()
            read = self.to_read(session, asset)

        logger.info("phone.deactivated", phone_number=phone_number, from_status=source)
        self._publish_status(DomainEvent.ASSET_STATUS_CHANGED, read, source)
        return read

    def flag_risk(self, actor: Actor, phone_number: str, reason: RiskReason) -> PhoneRead:
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self.get_asset_row(session, phone_number, for_update=True)
            if actor.is_employee:
                if reason != RiskReason.USER_REPORTED or asset.current_employee_id != actor.id:
                    raise ForbiddenError("only the current holder may report a phone")
            else:
                self._require_manage(actor, asset.department_id)
            self.ensure_no_pending_transfer(session, phone_number)
            target = RISK_TARGETS[reason]
            if asset.status != PhoneStatus.IN_USE:
                raise InvalidStateError(f"cannot flag risk on phone in status {asset.status}")

            source = asset.status
            asset.status = target
            if reason == RiskReason.APPLICANT_DEPARTED:
                asset.applicant_status_snapshot = EmploymentStatus.DEPARTED
            self._touch(asset)
            session.add(asset)
            session.commit()
            read = self.to_read(session, asset)

        logger.info("phone.risk_flagged", phone_number=phone_number, reason=reason)
        self._publish_status(DomainEvent.ASSET_RISK_FLAGGED, read, source, reason=reason)
        return read

    def clear_risk(self, actor: Actor, phone_number: str) -> PhoneRead:
        return self._hold_transition(
            actor,
            phone_number,
            sources=RISK_STATES,
            target=PhoneStatus.IN_USE,
            operation="clear risk on",
        )

    def suspend(self, actor: Actor, phone_number: str) -> PhoneRead:
        return self._hold_transition(
            actor,
            phone_number,
            sources=frozenset({PhoneStatus.IN_USE}),
            target=PhoneStatus.SUSPENDED,
            operation="suspend",
        )

    def resume(self, actor: Actor, phone_number: str) -> PhoneRead:
        return self._hold_transition(
            actor,
            phone_number,
            sources=frozenset({PhoneStatus.SUSPENDED}),
            target=PhoneStatus.IN_USE,
            operation="resume",
        )

    def start_card_replacement(self, actor: Actor, phone_number: str) -> PhoneRead:
        return self._hold_transition(
            actor,
            phone_number,
            sources=frozenset({PhoneStatus.IN_USE}),
            target=PhoneStatus.CARD_REPLACING,
            operation="start card replacement for",
        )

    def finish_card_replacement(self, actor: Actor, phone_number: str) -> PhoneRead:
        return self._hold_transition(
            actor,
            phone_number,
            sources=frozenset({PhoneStatus.CARD_REPLACING}),
            target=PhoneStatus.IN_USE,
            operation="finish card replacement for",
        )

    def _hold_transition(
        self,
        actor: Actor,
        phone_number: str,
        *,
        sources: frozenset[PhoneStatus],
        target: PhoneStatus,
        operation: str,
    ) -> PhoneRead:
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self.get_asset_row(session, phone_number, for_update=True)
            self._require_manage(actor, asset.department_id)
            self.ensure_no_pending_transfer(session, phone_number)
            if asset.status not in sources:
                raise InvalidStateError(f"cannot {operation} phone in status {asset.status}")
            self._ensure_transition(asset, target, operation)

            source = asset.status
            asset.status = target
            self._touch(asset)
            session.add(asset)
            session.commit()
            read = self.to_read(session, asset)

        logger.info("phone.status_changed", phone_number=phone_number, from_status=source, status=target)
        self._publish_status(DomainEvent.ASSET_STATUS_CHANGED, read, source)
        return read

    def delete_asset(self, actor: Actor, phone_number: str) -> None:
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self.get_asset_row(session, phone_number, for_update=True)
            self._require_manage(actor, asset.department_id)
            has_history = session.exec(
                select(PhoneUsageRecord.id).where(PhoneUsageRecord.phone_number == phone_number)
            ).first()
            if has_history is not None:
                raise ConflictError(f"phone {phone_number} has usage history and cannot be deleted")
            session.delete(asset)
            session.commit()

        logger.info("phone.deleted", phone_number=phone_number)
        event_bus.publish_dict(DomainEvent.ASSET_DELETED, {"phone_number": phone_number})

    def scan_departed_applicants(self, actor: Actor) -> list[PhoneRead]:
        """Refresh applicant snapshots and flag in-use phones whose applicant left."""
        principal = self._require_admin(actor)
        managed = managed_department_ids(principal)
        with self._session() as session:
            statement = select(PhoneAsset)
            if managed is not ALL_DEPARTMENTS:
                if not managed:
                    return []
                statement = statement.where(col(PhoneAsset.department_id).in_(sorted(managed)))
            candidates: list[str] = []
            for asset in session.exec(statement).all():
                applicant = load_employee(session, asset.applicant_employee_id)
                if asset.applicant_status_snapshot != applicant.employment_status:
                    asset.applicant_status_snapshot = applicant.employment_status
                    self._touch(asset)
                    session.add(asset)
                if (
                    applicant.employment_status == EmploymentStatus.DEPARTED
                    and asset.status == PhoneStatus.IN_USE
                ):
                    candidates.append(asset.phone_number)
            session.commit()

        flagged: list[PhoneRead] = []
        for phone_number in candidates:
            try:
                flagged.append(self.flag_risk(actor, phone_number, RiskReason.APPLICANT_DEPARTED))
            except (ConflictError, InvalidStateError) as exc:
                logger.info("phone.risk_scan_skipped", phone_number=phone_number, kind=exc.kind, reason=exc.message)
        return flagged
