"""Two-party ownership transfer of a phone between employees.

A request only records intent. Ownership moves when the receiving employee
accepts, and that step swaps the open usage record and the asset's holder
in one transaction under the phone's lock.
"""

from __future__ import annotations

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
    EmploymentStatus,
    TransferDirection,
    TransferInitiateRequest,
    TransferRead,
    TransferRequest,
)
from phone_assets.domain.permissions import can_view
from phone_assets.domain.state_machine import PhoneStatus, TransferState, can_transfer_transition
from phone_assets.infra.clock import Clock, get_clock
from phone_assets.infra.db import get_engine
from phone_assets.infra.events import DomainEvent, event_bus
from phone_assets.infra.locks import hold_keys, phone_key
from phone_assets.services.directory_service import load_employee
from phone_assets.services.phone_service import PhoneService

logger = structlog.get_logger(__name__)


class TransferService:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or get_clock()
        self._phones = PhoneService(clock=self._clock)

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_request_row(self, session: Session, request_id: str, *, for_update: bool = False) -> TransferRequest:
        statement = select(TransferRequest).where(TransferRequest.id == request_id)
        if for_update:
            statement = statement.with_for_update()
        row = session.exec(statement).first()
        if row is None:
            raise NotFoundError(f"transfer request not found: {request_id}")
        return row

    def _phone_number_of(self, request_id: str) -> str:
        with self._session() as session:
            return self._get_request_row(session, request_id).phone_number

    def _require_employee(self, actor: Actor) -> str:
        if not actor.is_employee:
            raise ForbiddenError("transfers are performed by employees")
        return actor.id

    def _payload(self, row: TransferRequest) -> dict[str, str | None]:
        return {
            "request_id": row.id,
            "phone_number": row.phone_number,
            "from_employee_id": row.from_employee_id,
            "to_employee_id": row.to_employee_id,
            "state": row.state,
        }

    def initiate(self, actor: Actor, phone_number: str, payload: TransferInitiateRequest) -> TransferRead:
        from_employee_id = self._require_employee(actor)
        with hold_keys(phone_key(phone_number)), self._session() as session:
            asset = self._phones.get_asset_row(session, phone_number, for_update=True)
            if asset.current_employee_id != from_employee_id:
                raise ForbiddenError("only the current holder may transfer this phone")
            if self._phones.pending_transfer(session, phone_number) is not None:
                raise ConflictError(f"phone {phone_number} already has a pending transfer request")
            if asset.status != PhoneStatus.IN_USE:
                raise InvalidStateError(f"cannot transfer phone in status {asset.status}")
            recipient = load_employee(session, payload.to_employee_id)
            if recipient.id == from_employee_id:
                raise ValidationError("cannot transfer a phone to its current holder")
            if recipient.employment_status != EmploymentStatus.ACTIVE:
                raise ValidationError(f"employee {recipient.id} is not active")

            row = TransferRequest(
                phone_number=phone_number,
                pending_phone_number=phone_number,
                from_employee_id=from_employee_id,
                to_employee_id=recipient.id,
                remark=payload.remark,
                state=TransferState.PENDING,
                created_at=self._clock.now(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"phone {phone_number} already has a pending transfer request") from exc
            session.refresh(row)
            read = TransferRead.model_validate(row)

        logger.info("transfer.initiated", request_id=read.id, phone_number=phone_number, to_employee_id=recipient.id)
        event_bus.publish_dict(DomainEvent.TRANSFER_INITIATED, self._payload(row))
        return read

    def accept(self, actor: Actor, request_id: str) -> TransferRead:
        employee_id = self._require_employee(actor)
        phone_number = self._phone_number_of(request_id)
        with hold_keys(phone_key(phone_number)), self._session() as session:
            row = self._get_request_row(session, request_id, for_update=True)
            if row.to_employee_id != employee_id:
                raise ForbiddenError("only the receiving employee may accept")
            if not can_transfer_transition(row.state, TransferState.ACCEPTED):
                raise InvalidStateError(f"transfer request is already {row.state}")
            asset = self._phones.get_asset_row(session, phone_number, for_update=True)
            if asset.status != PhoneStatus.IN_USE or asset.current_employee_id != row.from_employee_id:
                raise InvalidStateError("phone no longer held in use by the sender")
            recipient = load_employee(session, row.to_employee_id)

            now = self._clock.now()
            handover_date = now.date()
            closed = self._phones.close_usage(session, phone_number, handover_date)
            if closed is None or closed.employee_id != row.from_employee_id:
                raise InvalidStateError("sender has no open usage record for this phone")
            # Flush the close first so the open-record guard sees a consistent view.
            session.flush()
            self._phones.open_usage(session, phone_number, recipient.id, handover_date)
            asset.current_employee_id = recipient.id
            asset.department_id = recipient.department_id
            asset.updated_at = now
            row.state = TransferState.ACCEPTED
            row.pending_phone_number = None
            row.resolved_at = now
            session.add(asset)
            session.add(row)
            session.commit()
            session.refresh(row)
            read = TransferRead.model_validate(row)

        logger.info("transfer.accepted", request_id=request_id, phone_number=phone_number, employee_id=employee_id)
        event_bus.publish_dict(DomainEvent.TRANSFER_ACCEPTED, self._payload(row))
        return read

    def reject(self, actor: Actor, request_id: str) -> TransferRead:
        employee_id = self._require_employee(actor)
        phone_number = self._phone_number_of(request_id)
        with hold_keys(phone_key(phone_number)), self._session() as session:
            row = self._get_request_row(session, request_id, for_update=True)
            if row.to_employee_id != employee_id:
                raise ForbiddenError("only the receiving employee may reject")
            if not can_transfer_transition(row.state, TransferState.REJECTED):
                raise InvalidStateError(f"transfer request is already {row.state}")
            row.state = TransferState.REJECTED
            row.pending_phone_number = None
            row.resolved_at = self._clock.now()
            session.add(row)
            session.commit()
            session.refresh(row)
            read = TransferRead.model_validate(row)

        logger.info("transfer.rejected", request_id=request_id, phone_number=phone_number, employee_id=employee_id)
        event_bus.publish_dict(DomainEvent.TRANSFER_REJECTED, self._payload(row))
        return read

    def get_transfer_request(self, actor: Actor, request_id: str) -> TransferRead:
        with self._session() as session:
            row = self._get_request_row(session, request_id)
            if actor.is_employee:
                if actor.id not in {row.from_employee_id, row.to_employee_id}:
                    raise NotFoundError(f"transfer request not found: {request_id}")
            else:
                asset = self._phones.get_asset_row(session, row.phone_number)
                if actor.principal is None or not can_view(actor.principal, asset.department_id):
                    raise NotFoundError(f"transfer request not found: {request_id}")
            return TransferRead.model_validate(row)

    def list_transfer_requests(
        self,
        actor: Actor,
        *,
        direction: TransferDirection = TransferDirection.INCOMING,
        state: TransferState | None = None,
    ) -> list[TransferRead]:
        employee_id = self._require_employee(actor)
        with self._session() as session:
            statement = select(TransferRequest)
            if direction == TransferDirection.INCOMING:
                statement = statement.where(TransferRequest.to_employee_id == employee_id)
            elif direction == TransferDirection.OUTGOING:
                statement = statement.where(TransferRequest.from_employee_id == employee_id)
            else:
                statement = statement.where(
                    or_(
                        TransferRequest.to_employee_id == employee_id,
                        TransferRequest.from_employee_id == employee_id,
                    )
                )
            if state is not None:
                statement = statement.where(TransferRequest.state == state)
            rows = session.exec(statement.order_by(col(TransferRequest.created_at).desc())).all()
            return [TransferRead.model_validate(item) for item in rows]

    def list_phone_transfers(self, actor: Actor, phone_number: str) -> list[TransferRead]:
        with self._session() as session:
            asset = self._phones.get_asset_row(session, phone_number)
            if actor.principal is None or not can_view(actor.principal, asset.department_id):
                raise NotFoundError(f"phone not found: {phone_number}")
            rows = session.exec(
                select(TransferRequest)
                .where(TransferRequest.phone_number == phone_number)
                .order_by(col(TransferRequest.created_at).desc())
            ).all()
            return [TransferRead.model_validate(item) for item in rows]
