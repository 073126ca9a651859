"""Inventory verification tasks.

Items are a snapshot of the audit-eligible assets in scope when the task is
created. Later moves of an asset never touch existing items. The task status is
derived from its items and recomputed under the task's lock after each update.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from phone_assets.domain.actors import Actor
from phone_assets.domain.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from phone_assets.domain.models import (
    Department,
    Employee,
    InventoryItemActionRequest,
    InventoryScopeType,
    InventorySubmissionRead,
    InventoryTask,
    InventoryTaskCreate,
    InventoryTaskItem,
    InventoryTaskItemRead,
    InventoryTaskRead,
    InventoryTaskSubmission,
    InventoryTaskSummary,
    InventoryUnlistedReport,
    PhoneAsset,
    UnlistedPhoneReportRead,
    UnlistedPhoneReportRequest,
    is_valid_phone_number,
)
from phone_assets.domain.permissions import Principal, can_manage, can_view, is_super_admin
from phone_assets.domain.state_machine import (
    AUDIT_ELIGIBLE_STATES,
    ITEM_ACTION_TARGETS,
    InventoryItemStatus,
    InventoryTaskStatus,
    can_apply_item_action,
    derive_task_status,
)
from phone_assets.infra.clock import Clock, ensure_utc, get_clock
from phone_assets.infra.db import get_engine
from phone_assets.infra.events import DomainEvent, event_bus
from phone_assets.infra.locks import hold_keys, task_item_key, task_key
from phone_assets.services.directory_service import load_employee

logger = structlog.get_logger(__name__)


class InventoryService:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or get_clock()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_admin(self, actor: Actor) -> Principal:
        if not actor.is_admin or actor.principal is None:
            raise ForbiddenError("administrator required")
        return actor.principal

    def _require_employee(self, actor: Actor) -> str:
        if not actor.is_employee:
            raise ForbiddenError("employee required")
        return actor.id

    def _get_task_row(self, session: Session, task_id: str, *, for_update: bool = False) -> InventoryTask:
        statement = select(InventoryTask).where(InventoryTask.id == task_id)
        if for_update:
            statement = statement.with_for_update()
        task = session.exec(statement).first()
        if task is None:
            raise NotFoundError(f"inventory task not found: {task_id}")
        return task

    def _get_item_row(self, session: Session, task_id: str, item_id: str) -> InventoryTaskItem:
        item = session.exec(
            select(InventoryTaskItem)
            .where(InventoryTaskItem.id == item_id)
            .where(InventoryTaskItem.task_id == task_id)
            .with_for_update()
        ).first()
        if item is None:
            raise NotFoundError(f"inventory task item not found: {item_id}")
        return item

    def _item_departments(self, session: Session, task_id: str) -> set[int | None]:
        rows = session.exec(
            select(InventoryTaskItem.department_id).where(InventoryTaskItem.task_id == task_id).distinct()
        ).all()
        return set(rows)

    def _summary(self, session: Session, task_id: str) -> InventoryTaskSummary:
        counts = {
            status: count
            for status, count in session.exec(
                select(InventoryTaskItem.status, func.count())
                .where(InventoryTaskItem.task_id == task_id)
                .group_by(InventoryTaskItem.status)
            ).all()
        }
        unlisted = session.exec(
            select(func.count()).select_from(InventoryUnlistedReport).where(InventoryUnlistedReport.task_id == task_id)
        ).one()
        return InventoryTaskSummary(
            total=sum(counts.values()),
            pending=counts.get(InventoryItemStatus.PENDING, 0),
            confirmed=counts.get(InventoryItemStatus.CONFIRMED, 0),
            unavailable=counts.get(InventoryItemStatus.UNAVAILABLE, 0),
            unlisted_reported=unlisted,
        )

    def _to_read(self, session: Session, task: InventoryTask) -> InventoryTaskRead:
        payload = task.model_dump()
        payload["summary"] = self._summary(session, task.id)
        return InventoryTaskRead.model_validate(payload)

    def _admin_can_see(self, session: Session, principal: Principal, task: InventoryTask) -> bool:
        if is_super_admin(principal) or task.created_by == principal.user_id:
            return True
        departments = set(task.department_ids) | self._item_departments(session, task.id)
        return any(can_view(principal, department_id) for department_id in departments if department_id is not None)

    def _employee_in_task(self, session: Session, task: InventoryTask, employee: Employee) -> bool:
        if task.scope_type == InventoryScopeType.EMPLOYEE_IDS:
            if employee.id in task.scope_values:
                return True
        elif employee.department_id in task.department_ids:
            return True
        holds_item = session.exec(
            select(InventoryTaskItem.id)
            .where(InventoryTaskItem.task_id == task.id)
            .where(InventoryTaskItem.employee_id == employee.id)
        ).first()
        return holds_item is not None

    def _ensure_visible(self, session: Session, actor: Actor, task: InventoryTask) -> None:
        if actor.is_employee:
            employee = load_employee(session, actor.id)
            if self._employee_in_task(session, task, employee):
                return
        elif actor.principal is not None and self._admin_can_see(session, actor.principal, task):
            return
        raise NotFoundError(f"inventory task not found: {task.id}")

    # -- queries --

    def get_task(self, actor: Actor, task_id: str) -> InventoryTaskRead:
        with self._session() as session:
            task = self._get_task_row(session, task_id)
            self._ensure_visible(session, actor, task)
            return self._to_read(session, task)

    def list_tasks(
        self,
        actor: Actor,
        *,
        status: InventoryTaskStatus | None = None,
        scope_type: InventoryScopeType | None = None,
        keyword: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[InventoryTaskRead]:
        principal = self._require_admin(actor)
        with self._session() as session:
            statement = select(InventoryTask)
            if status is not None:
                statement = statement.where(InventoryTask.status == status)
            if scope_type is not None:
                statement = statement.where(InventoryTask.scope_type == scope_type)
            if keyword:
                statement = statement.where(col(InventoryTask.name).like(f"%{keyword.strip()}%"))
            if created_from is not None:
                statement = statement.where(InventoryTask.created_at >= ensure_utc(created_from))
            if created_to is not None:
                statement = statement.where(InventoryTask.created_at <= ensure_utc(created_to))
            rows = session.exec(statement.order_by(col(InventoryTask.created_at).desc())).all()
            return [self._to_read(session, row) for row in rows if self._admin_can_see(session, principal, row)]

    def list_task_items(
        self,
        actor: Actor,
        task_id: str,
        *,
        status: InventoryItemStatus | None = None,
        employee_id: str | None = None,
        department_id: int | None = None,
    ) -> list[InventoryTaskItemRead]:
        with self._session() as session:
            task = self._get_task_row(session, task_id)
            self._ensure_visible(session, actor, task)
            if actor.is_employee:
                employee_id = actor.id
            statement = select(InventoryTaskItem).where(InventoryTaskItem.task_id == task_id)
            if status is not None:
                statement = statement.where(InventoryTaskItem.status == status)
            if employee_id is not None:
                statement = statement.where(InventoryTaskItem.employee_id == employee_id)
            if department_id is not None:
                statement = statement.where(InventoryTaskItem.department_id == department_id)
            rows = session.exec(statement.order_by(col(InventoryTaskItem.phone_number))).all()
            return [InventoryTaskItemRead.model_validate(row) for row in rows]

    def list_employee_active_tasks(self, employee_id: str) -> list[InventoryTaskRead]:
        with self._session() as session:
            load_employee(session, employee_id)
            submitted = select(InventoryTaskSubmission.task_id).where(
                InventoryTaskSubmission.employee_id == employee_id
            )
            with_items = select(InventoryTaskItem.task_id).where(InventoryTaskItem.employee_id == employee_id)
            rows = session.exec(
                select(InventoryTask)
                .where(InventoryTask.status != InventoryTaskStatus.CLOSED)
                .where(col(InventoryTask.id).in_(with_items))
                .where(col(InventoryTask.id).not_in(submitted))
                .order_by(col(InventoryTask.due_at))
            ).all()
            return [self._to_read(session, row) for row in rows]

    def list_unlisted_reports(self, actor: Actor, task_id: str) -> list[UnlistedPhoneReportRead]:
        with self._session() as session:
            task = self._get_task_row(session, task_id)
            self._ensure_visible(session, actor, task)
            statement = select(InventoryUnlistedReport).where(InventoryUnlistedReport.task_id == task_id)
            if actor.is_employee:
                statement = statement.where(InventoryUnlistedReport.employee_id == actor.id)
            rows = session.exec(statement.order_by(col(InventoryUnlistedReport.created_at))).all()
            return [UnlistedPhoneReportRead.model_validate(row) for row in rows]

    # -- commands --

    def create_task(self, actor: Actor, payload: InventoryTaskCreate) -> InventoryTaskRead:
        principal = self._require_admin(actor)
        name = payload.name.strip()
        if not name:
            raise ValidationError("task name is required")
        scope_values = list(dict.fromkeys(value.strip() for value in payload.scope_values if value.strip()))
        if not scope_values:
            raise ValidationError("scope values must not be empty")
        due_at = ensure_utc(payload.due_at)
        now = self._clock.now()
        if due_at <= now:
            raise ValidationError("due date must be in the future")

        with self._session() as session:
            eligible = select(PhoneAsset).where(col(PhoneAsset.status).in_(sorted(AUDIT_ELIGIBLE_STATES)))
            if payload.scope_type == InventoryScopeType.DEPARTMENT_IDS:
                try:
                    department_ids = [int(value) for value in scope_values]
                except ValueError as exc:
                    raise ValidationError("department scope values must be integers") from exc
                for department_id in department_ids:
                    if session.get(Department, department_id) is None:
                        raise NotFoundError(f"department not found: {department_id}")
                    if not can_manage(principal, department_id):
                        raise ForbiddenError(f"manage permission required on department {department_id}")
                eligible = eligible.where(col(PhoneAsset.department_id).in_(department_ids))
            else:
                employees = [load_employee(session, value) for value in scope_values]
                for employee in employees:
                    if not can_manage(principal, employee.department_id):
                        raise ForbiddenError(f"manage permission required for employee {employee.id}")
                department_ids = sorted({employee.department_id for employee in employees})
                eligible = eligible.where(col(PhoneAsset.current_employee_id).in_(scope_values))

            assets = session.exec(eligible.order_by(col(PhoneAsset.phone_number))).all()
            task = InventoryTask(
                name=name,
                due_at=due_at,
                scope_type=payload.scope_type,
                scope_values=scope_values,
                department_ids=sorted(set(department_ids)),
                created_by=principal.user_id,
                created_at=now,
                updated_at=now,
            )
            task.status = derive_task_status([InventoryItemStatus.PENDING] * len(assets))
            session.add(task)
            session.flush()
            session.add_all(
                InventoryTaskItem(
                    task_id=task.id,
                    phone_number=asset.phone_number,
                    employee_id=asset.current_employee_id,
                    department_id=asset.department_id,
                    status=InventoryItemStatus.PENDING,
                    purpose=asset.purpose,
                    updated_at=now,
                )
                for asset in assets
            )
            session.commit()
            read = self._to_read(session, task)

        logger.info("inventory.task_created", task_id=read.id, scope_type=read.scope_type, item_count=len(assets))
        event_bus.publish_dict(
            DomainEvent.TASK_CREATED,
            {
                "task_id": read.id,
                "name": read.name,
                "scope_type": read.scope_type,
                "scope_values": read.scope_values,
                "item_count": len(assets),
            },
        )
        return read

    def _recompute_status(self, session: Session, task: InventoryTask) -> InventoryTaskStatus:
        """Caller holds the task key and commits."""
        session.flush()
        statuses = session.exec(select(InventoryTaskItem.status).where(InventoryTaskItem.task_id == task.id)).all()
        derived = derive_task_status(statuses, closed=task.status == InventoryTaskStatus.CLOSED)
        if derived != task.status:
            task.status = derived
            task.updated_at = self._clock.now()
            session.add(task)
        return derived

    def perform_item_action(
        self,
        actor: Actor,
        task_id: str,
        item_id: str,
        payload: InventoryItemActionRequest,
    ) -> InventoryTaskItemRead:
        with hold_keys(task_key(task_id), task_item_key(item_id)), self._session() as session:
            task = self._get_task_row(session, task_id, for_update=True)
            item = self._get_item_row(session, task_id, item_id)
            if actor.is_employee:
                asset = session.get(PhoneAsset, item.phone_number)
                holder = asset.current_employee_id if asset is not None else None
                if actor.id not in {item.employee_id, holder}:
                    raise ForbiddenError("only the phone's holder may verify this item")
            else:
                principal = self._require_admin(actor)
                if not can_manage(principal, item.department_id):
                    raise ForbiddenError("manage permission required on the item's department")
            if task.status == InventoryTaskStatus.CLOSED:
                raise InvalidStateError("inventory task is closed")
            if not can_apply_item_action(item.status, payload.action):
                raise InvalidStateError(f"cannot {payload.action} item in status {item.status}")

            item.status = ITEM_ACTION_TARGETS[payload.action]
            if payload.purpose is not None:
                item.purpose = payload.purpose
            if payload.comment is not None:
                item.comment = payload.comment
            item.updated_by = actor.id
            item.updated_at = self._clock.now()
            session.add(item)
            task_status = self._recompute_status(session, task)
            session.commit()
            read = InventoryTaskItemRead.model_validate(item)

        logger.info("inventory.item_updated", task_id=task_id, item_id=item_id, status=read.status)
        event_bus.publish_dict(
            DomainEvent.TASK_ITEM_UPDATED,
            {
                "task_id": task_id,
                "item_id": item_id,
                "phone_number": read.phone_number,
                "status": read.status,
                "task_status": task_status,
            },
        )
        return read

    def report_unlisted_phone(
        self,
        actor: Actor,
        task_id: str,
        payload: UnlistedPhoneReportRequest,
    ) -> UnlistedPhoneReportRead:
        employee_id = self._require_employee(actor)
        phone_number = payload.phone_number.strip()
        if not is_valid_phone_number(phone_number):
            raise ValidationError(f"invalid phone number: {payload.phone_number}")
        with hold_keys(task_key(task_id)), self._session() as session:
            task = self._get_task_row(session, task_id)
            self._ensure_visible(session, actor, task)
            listed = session.exec(
                select(InventoryTaskItem.id)
                .where(InventoryTaskItem.task_id == task_id)
                .where(InventoryTaskItem.phone_number == phone_number)
            ).first()
            if listed is not None:
                raise ConflictError(f"phone {phone_number} is already listed in this task")
            duplicate = session.exec(
                select(InventoryUnlistedReport.id)
                .where(InventoryUnlistedReport.task_id == task_id)
                .where(InventoryUnlistedReport.employee_id == employee_id)
                .where(InventoryUnlistedReport.phone_number == phone_number)
            ).first()
            if duplicate is not None:
                raise ConflictError(f"phone {phone_number} was already reported")
            if task.status == InventoryTaskStatus.CLOSED:
                raise InvalidStateError("inventory task is closed")

            report = InventoryUnlistedReport(
                task_id=task_id,
                employee_id=employee_id,
                phone_number=phone_number,
                purpose=payload.purpose,
                comment=payload.comment,
                created_at=self._clock.now(),
            )
            session.add(report)
            session.commit()
            read = UnlistedPhoneReportRead.model_validate(report)

        logger.info("inventory.unlisted_reported", task_id=task_id, employee_id=employee_id, phone_number=phone_number)
        event_bus.publish_dict(
            DomainEvent.UNLISTED_PHONE_REPORTED,
            {"task_id": task_id, "employee_id": employee_id, "phone_number": phone_number},
        )
        return read

    def submit_task(self, actor: Actor, task_id: str) -> InventorySubmissionRead:
        employee_id = self._require_employee(actor)
        with hold_keys(task_key(task_id)), self._session() as session:
            task = self._get_task_row(session, task_id)
            statuses = session.exec(
                select(InventoryTaskItem.status)
                .where(InventoryTaskItem.task_id == task_id)
                .where(InventoryTaskItem.employee_id == employee_id)
            ).all()
            reported = session.exec(
                select(InventoryUnlistedReport.id)
                .where(InventoryUnlistedReport.task_id == task_id)
                .where(InventoryUnlistedReport.employee_id == employee_id)
            ).first()
            if not statuses and reported is None:
                raise NotFoundError(f"no inventory work for employee {employee_id} in task {task_id}")
            existing = session.get(InventoryTaskSubmission, (task_id, employee_id))
            if existing is not None:
                return InventorySubmissionRead.model_validate(existing)
            if task.status == InventoryTaskStatus.CLOSED:
                raise InvalidStateError("inventory task is closed")
            pending = sum(1 for status in statuses if status == InventoryItemStatus.PENDING)
            if pending:
                raise InvalidStateError(f"{pending} item(s) still pending verification")

            submission = InventoryTaskSubmission(
                task_id=task_id,
                employee_id=employee_id,
                submitted_at=self._clock.now(),
            )
            session.add(submission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("task already submitted") from exc
            read = InventorySubmissionRead.model_validate(submission)

        logger.info("inventory.task_submitted", task_id=task_id, employee_id=employee_id, item_count=len(statuses))
        event_bus.publish_dict(
            DomainEvent.TASK_SUBMITTED,
            {"task_id": task_id, "employee_id": employee_id, "item_count": len(statuses)},
        )
        return read

    def close_task(self, actor: Actor, task_id: str) -> InventoryTaskRead:
        principal = self._require_admin(actor)
        with hold_keys(task_key(task_id)), self._session() as session:
            task = self._get_task_row(session, task_id, for_update=True)
            if not self._admin_can_see(session, principal, task):
                raise NotFoundError(f"inventory task not found: {task_id}")
            departments = self._item_departments(session, task_id) or set(task.department_ids)
            if not all(can_manage(principal, department_id) for department_id in departments):
                raise ForbiddenError("manage permission required on every department of the task")
            if task.status == InventoryTaskStatus.CLOSED:
                return self._to_read(session, task)

            now = self._clock.now()
            task.status = InventoryTaskStatus.CLOSED
            task.closed_at = now
            task.updated_at = now
            session.add(task)
            session.commit()
            read = self._to_read(session, task)

        logger.info("inventory.task_closed", task_id=task_id)
        event_bus.publish_dict(DomainEvent.TASK_CLOSED, {"task_id": task_id, "summary": read.summary.model_dump()})
        return read
