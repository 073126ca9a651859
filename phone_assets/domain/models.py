from __future__ import annotations

import re
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from phone_assets.domain.permissions import PermissionScope
from phone_assets.domain.state_machine import (
    DeactivationInitiator,
    InventoryItemAction,
    InventoryItemStatus,
    InventoryTaskStatus,
    PhoneStatus,
    RiskReason,
    TransferState,
)

PHONE_NUMBER_PATTERN = re.compile(r"^1[3-9]\d{9}$")


def now_utc() -> datetime:
    return datetime.now(UTC)


def is_valid_phone_number(value: str) -> bool:
    return bool(PHONE_NUMBER_PATTERN.match(value.strip()))


class EmploymentStatus(StrEnum):
    ACTIVE = "active"
    DEPARTED = "departed"


class InventoryScopeType(StrEnum):
    DEPARTMENT_IDS = "department_ids"
    EMPLOYEE_IDS = "employee_ids"


class TransferDirection(StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    ANY = "any"


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    actor_kind: str | None = Field(default=None)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Department(SQLModel, table=True):
    __tablename__ = "departments"

    id: int = Field(primary_key=True)
    name: str = Field(index=True)
    parent_id: int | None = Field(default=None, foreign_key="departments.id", index=True)
    active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class Employee(SQLModel, table=True):
    __tablename__ = "employees"

    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    department_id: int = Field(foreign_key="departments.id", index=True)
    employment_status: EmploymentStatus = Field(default=EmploymentStatus.ACTIVE, index=True)
    password_hash: str | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class AdminUser(SQLModel, table=True):
    __tablename__ = "admin_users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    is_super_admin: bool = Field(default=False)
    legacy_role: str | None = Field(default=None)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class PermissionGrant(SQLModel, table=True):
    __tablename__ = "permission_grants"
    __table_args__ = (
        UniqueConstraint("user_id", "department_id", name="uq_permission_grants_user_department"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="admin_users.id", index=True)
    department_id: int = Field(foreign_key="departments.id", index=True)
    scope: PermissionScope
    included_sub_department_ids: list[int] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc)


class PhoneAsset(SQLModel, table=True):
    __tablename__ = "phone_assets"

    phone_number: str = Field(primary_key=True)
    status: PhoneStatus = Field(default=PhoneStatus.IDLE, index=True)
    applicant_employee_id: str = Field(foreign_key="employees.id", index=True)
    applicant_status_snapshot: EmploymentStatus = Field(default=EmploymentStatus.ACTIVE, index=True)
    current_employee_id: str | None = Field(default=None, foreign_key="employees.id", index=True)
    vendor: str = Field(index=True)
    purpose: str | None = None
    remarks: str | None = None
    department_id: int | None = Field(default=None, index=True)
    application_date: date
    cancellation_date: date | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class PhoneUsageRecord(SQLModel, table=True):
    __tablename__ = "phone_usage_records"
    __table_args__ = (Index("ix_phone_usage_records_phone_start", "phone_number", "start_date"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    phone_number: str = Field(foreign_key="phone_assets.phone_number", index=True)
    employee_id: str = Field(foreign_key="employees.id", index=True)
    start_date: date
    end_date: date | None = None
    created_at: datetime = Field(default_factory=now_utc)


class TransferRequest(SQLModel, table=True):
    __tablename__ = "transfer_requests"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    phone_number: str = Field(foreign_key="phone_assets.phone_number", index=True)
    # Mirrors phone_number only while pending; the unique index allows one pending row per number.
    pending_phone_number: str | None = Field(default=None, unique=True)
    from_employee_id: str = Field(foreign_key="employees.id", index=True)
    to_employee_id: str = Field(foreign_key="employees.id", index=True)
    remark: str | None = None
    state: TransferState = Field(default=TransferState.PENDING, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    resolved_at: datetime | None = None


class InventoryTask(SQLModel, table=True):
    __tablename__ = "inventory_tasks"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    due_at: datetime
    scope_type: InventoryScopeType = Field(index=True)
    scope_values: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    department_ids: list[int] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    status: InventoryTaskStatus = Field(default=InventoryTaskStatus.PENDING, index=True)
    created_by: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    closed_at: datetime | None = None


class InventoryTaskItem(SQLModel, table=True):
    __tablename__ = "inventory_task_items"
    __table_args__ = (
        UniqueConstraint("task_id", "phone_number", name="uq_inventory_task_items_task_phone"),
        Index("ix_inventory_task_items_task_status", "task_id", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    task_id: str = Field(foreign_key="inventory_tasks.id", index=True)
    phone_number: str = Field(index=True)
    employee_id: str | None = Field(default=None, index=True)
    department_id: int | None = Field(default=None, index=True)
    status: InventoryItemStatus = Field(default=InventoryItemStatus.PENDING, index=True)
    purpose: str | None = None
    comment: str | None = None
    updated_by: str | None = None
    updated_at: datetime = Field(default_factory=now_utc)


class InventoryUnlistedReport(SQLModel, table=True):
    __tablename__ = "inventory_unlisted_reports"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    task_id: str = Field(foreign_key="inventory_tasks.id", index=True)
    employee_id: str = Field(foreign_key="employees.id", index=True)
    phone_number: str = Field(index=True)
    purpose: str | None = None
    comment: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class InventoryTaskSubmission(SQLModel, table=True):
    __tablename__ = "inventory_task_submissions"

    task_id: str = Field(foreign_key="inventory_tasks.id", primary_key=True)
    employee_id: str = Field(foreign_key="employees.id", primary_key=True)
    submitted_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class BootstrapAdminRequest(BaseModel):
    username: str
    password: str


class DevLoginRequest(BaseModel):
    username: str
    password: str


class EmployeeLoginRequest(BaseModel):
    employee_id: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    principal_kind: str


class DepartmentUpsert(BaseModel):
    id: int
    name: str
    parent_id: int | None = None
    active: bool = True


class DepartmentRead(ORMReadModel):
    id: int
    name: str
    parent_id: int | None = None
    active: bool


class DepartmentNode(BaseModel):
    id: int
    name: str
    parent_id: int | None = None
    active: bool
    children: list[DepartmentNode] = PydanticField(default_factory=list)


class EmployeeUpsert(BaseModel):
    id: str
    name: str
    department_id: int
    employment_status: EmploymentStatus = EmploymentStatus.ACTIVE
    password: str | None = None


class EmployeeRead(ORMReadModel):
    id: str
    name: str
    department_id: int
    employment_status: EmploymentStatus


class AdminUserCreate(BaseModel):
    username: str
    password: str
    is_super_admin: bool = False
    legacy_role: str | None = None


class AdminUserRead(ORMReadModel):
    id: str
    username: str
    is_super_admin: bool
    legacy_role: str | None = None
    is_active: bool
    created_at: datetime


class GrantWrite(BaseModel):
    department_id: int
    scope: PermissionScope
    included_sub_department_ids: list[int] = PydanticField(default_factory=list)

    @field_validator("scope")
    @classmethod
    def _scope_is_grantable(cls, value: PermissionScope) -> PermissionScope:
        if value == PermissionScope.NONE:
            raise ValueError("grant scope must be manage or view")
        return value


class GrantsReplaceRequest(BaseModel):
    grants: list[GrantWrite]


class GrantRead(ORMReadModel):
    id: str
    user_id: str
    department_id: int
    scope: PermissionScope
    included_sub_department_ids: list[int]


class EffectivePermissionRead(BaseModel):
    user_id: str
    department_id: int
    scope: PermissionScope


class UsageRecordRead(ORMReadModel):
    employee_id: str
    start_date: date
    end_date: date | None = None
    created_at: datetime


class PhoneRegisterRequest(BaseModel):
    phone_number: str
    applicant_employee_id: str
    application_date: date
    vendor: str
    purpose: str | None = None
    remarks: str | None = None


class PhoneUpdateRequest(BaseModel):
    vendor: str | None = None
    purpose: str | None = None
    remarks: str | None = None


class PhoneAssignRequest(BaseModel):
    employee_id: str
    purpose: str
    assignment_date: date


class PhoneRecoverRequest(BaseModel):
    reclaim_date: date


class PhoneDeactivationRequest(BaseModel):
    initiator: DeactivationInitiator = DeactivationInitiator.ADMIN


class PhoneRiskRequest(BaseModel):
    reason: RiskReason


class PhoneRead(ORMReadModel):
    phone_number: str
    status: PhoneStatus
    applicant_employee_id: str
    applicant_status_snapshot: EmploymentStatus
    current_employee_id: str | None = None
    vendor: str
    purpose: str | None = None
    remarks: str | None = None
    department_id: int | None = None
    application_date: date
    cancellation_date: date | None = None
    created_at: datetime
    updated_at: datetime
    usage_history: list[UsageRecordRead] = PydanticField(default_factory=list)


class TransferInitiateRequest(BaseModel):
    to_employee_id: str
    remark: str | None = None


class TransferRead(ORMReadModel):
    id: str
    phone_number: str
    from_employee_id: str
    to_employee_id: str
    remark: str | None = None
    state: TransferState
    created_at: datetime
    resolved_at: datetime | None = None


class InventoryTaskCreate(BaseModel):
    name: str
    due_at: datetime
    scope_type: InventoryScopeType
    scope_values: list[int | str]

    @field_validator("scope_values")
    @classmethod
    def _scope_values_as_text(cls, value: list[int | str]) -> list[str]:
        return [str(item) for item in value]


class InventoryTaskSummary(BaseModel):
    total: int = 0
    pending: int = 0
    confirmed: int = 0
    unavailable: int = 0
    unlisted_reported: int = 0


class InventoryTaskRead(ORMReadModel):
    id: str
    name: str
    due_at: datetime
    scope_type: InventoryScopeType
    scope_values: list[str]
    status: InventoryTaskStatus
    created_by: str
    created_at: datetime
    closed_at: datetime | None = None
    summary: InventoryTaskSummary = PydanticField(default_factory=InventoryTaskSummary)


class InventoryItemActionRequest(BaseModel):
    action: InventoryItemAction
    purpose: str | None = None
    comment: str | None = None


class InventoryTaskItemRead(ORMReadModel):
    id: str
    task_id: str
    phone_number: str
    employee_id: str | None = None
    department_id: int | None = None
    status: InventoryItemStatus
    purpose: str | None = None
    comment: str | None = None
    updated_at: datetime


class UnlistedPhoneReportRequest(BaseModel):
    phone_number: str
    purpose: str | None = None
    comment: str | None = None


class UnlistedPhoneReportRead(ORMReadModel):
    id: str
    task_id: str
    employee_id: str
    phone_number: str
    purpose: str | None = None
    comment: str | None = None
    created_at: datetime


class InventorySubmissionRead(ORMReadModel):
    task_id: str
    employee_id: str
    submitted_at: datetime
