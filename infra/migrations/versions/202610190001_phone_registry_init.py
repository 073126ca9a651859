"""phone registry initial tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None

employment_status = sa.Enum("ACTIVE", "DEPARTED", name="employmentstatus")
permission_scope = sa.Enum("NONE", "VIEW", "MANAGE", name="permissionscope")
phone_status = sa.Enum(
    "IDLE",
    "IN_USE",
    "PENDING_DEACTIVATION_USER",
    "PENDING_DEACTIVATION_ADMIN",
    "DEACTIVATED",
    "RISK_PENDING",
    "USER_REPORTED",
    "SUSPENDED",
    "CARD_REPLACING",
    name="phonestatus",
)
transfer_state = sa.Enum("PENDING", "ACCEPTED", "REJECTED", name="transferstate")
scope_type = sa.Enum("DEPARTMENT_IDS", "EMPLOYEE_IDS", name="inventoryscopetype")
task_status = sa.Enum("PENDING", "IN_PROGRESS", "COMPLETED", "CLOSED", name="inventorytaskstatus")
item_status = sa.Enum("PENDING", "CONFIRMED", "UNAVAILABLE", name="inventoryitemstatus")


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_kind", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["parent_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_departments_name", "departments", ["name"])
    op.create_index("ix_departments_parent_id", "departments", ["parent_id"])
    op.create_index("ix_departments_active", "departments", ["active"])

    op.create_table(
        "employees",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=False),
        sa.Column("employment_status", employment_status, nullable=False),
        sa.Column("password_hash", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_employees_name", "employees", ["name"])
    op.create_index("ix_employees_department_id", "employees", ["department_id"])
    op.create_index("ix_employees_employment_status", "employees", ["employment_status"])

    op.create_table(
        "admin_users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("is_super_admin", sa.Boolean(), nullable=False),
        sa.Column("legacy_role", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_admin_users_username", "admin_users", ["username"], unique=True)
    op.create_index("ix_admin_users_created_at", "admin_users", ["created_at"])

    op.create_table(
        "permission_grants",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=False),
        sa.Column("scope", permission_scope, nullable=False),
        sa.Column("included_sub_department_ids", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["admin_users.id"]),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "department_id", name="uq_permission_grants_user_department"),
    )
    op.create_index("ix_permission_grants_user_id", "permission_grants", ["user_id"])
    op.create_index("ix_permission_grants_department_id", "permission_grants", ["department_id"])

    op.create_table(
        "phone_assets",
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("status", phone_status, nullable=False),
        sa.Column("applicant_employee_id", sa.String(), nullable=False),
        sa.Column("applicant_status_snapshot", employment_status, nullable=False),
        sa.Column("current_employee_id", sa.String(), nullable=True),
        sa.Column("vendor", sa.String(), nullable=False),
        sa.Column("purpose", sa.String(), nullable=True),
        sa.Column("remarks", sa.String(), nullable=True),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("application_date", sa.Date(), nullable=False),
        sa.Column("cancellation_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["applicant_employee_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["current_employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("phone_number"),
    )
    op.create_index("ix_phone_assets_status", "phone_assets", ["status"])
    op.create_index("ix_phone_assets_applicant_employee_id", "phone_assets", ["applicant_employee_id"])
    op.create_index("ix_phone_assets_applicant_status_snapshot", "phone_assets", ["applicant_status_snapshot"])
    op.create_index("ix_phone_assets_current_employee_id", "phone_assets", ["current_employee_id"])
    op.create_index("ix_phone_assets_vendor", "phone_assets", ["vendor"])
    op.create_index("ix_phone_assets_department_id", "phone_assets", ["department_id"])
    op.create_index("ix_phone_assets_created_at", "phone_assets", ["created_at"])

    op.create_table(
        "phone_usage_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("employee_id", sa.String(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["phone_number"], ["phone_assets.phone_number"]),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_phone_usage_records_phone_number", "phone_usage_records", ["phone_number"])
    op.create_index("ix_phone_usage_records_employee_id", "phone_usage_records", ["employee_id"])
    op.create_index("ix_phone_usage_records_phone_start", "phone_usage_records", ["phone_number", "start_date"])

    op.create_table(
        "transfer_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("pending_phone_number", sa.String(), nullable=True),
        sa.Column("from_employee_id", sa.String(), nullable=False),
        sa.Column("to_employee_id", sa.String(), nullable=False),
        sa.Column("remark", sa.String(), nullable=True),
        sa.Column("state", transfer_state, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["phone_number"], ["phone_assets.phone_number"]),
        sa.ForeignKeyConstraint(["from_employee_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["to_employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pending_phone_number"),
    )
    op.create_index("ix_transfer_requests_phone_number", "transfer_requests", ["phone_number"])
    op.create_index("ix_transfer_requests_from_employee_id", "transfer_requests", ["from_employee_id"])
    op.create_index("ix_transfer_requests_to_employee_id", "transfer_requests", ["to_employee_id"])
    op.create_index("ix_transfer_requests_state", "transfer_requests", ["state"])
    op.create_index("ix_transfer_requests_created_at", "transfer_requests", ["created_at"])

    op.create_table(
        "inventory_tasks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scope_type", scope_type, nullable=False),
        sa.Column("scope_values", sa.JSON(), nullable=False),
        sa.Column("department_ids", sa.JSON(), nullable=False),
        sa.Column("status", task_status, nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inventory_tasks_name", "inventory_tasks", ["name"])
    op.create_index("ix_inventory_tasks_scope_type", "inventory_tasks", ["scope_type"])
    op.create_index("ix_inventory_tasks_status", "inventory_tasks", ["status"])
    op.create_index("ix_inventory_tasks_created_by", "inventory_tasks", ["created_by"])
    op.create_index("ix_inventory_tasks_created_at", "inventory_tasks", ["created_at"])

    op.create_table(
        "inventory_task_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("employee_id", sa.String(), nullable=True),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("status", item_status, nullable=False),
        sa.Column("purpose", sa.String(), nullable=True),
        sa.Column("comment", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["inventory_tasks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "phone_number", name="uq_inventory_task_items_task_phone"),
    )
    op.create_index("ix_inventory_task_items_task_id", "inventory_task_items", ["task_id"])
    op.create_index("ix_inventory_task_items_phone_number", "inventory_task_items", ["phone_number"])
    op.create_index("ix_inventory_task_items_employee_id", "inventory_task_items", ["employee_id"])
    op.create_index("ix_inventory_task_items_department_id", "inventory_task_items", ["department_id"])
    op.create_index("ix_inventory_task_items_status", "inventory_task_items", ["status"])
    op.create_index("ix_inventory_task_items_task_status", "inventory_task_items", ["task_id", "status"])

    op.create_table(
        "inventory_unlisted_reports",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("employee_id", sa.String(), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("purpose", sa.String(), nullable=True),
        sa.Column("comment", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["inventory_tasks.id"]),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inventory_unlisted_reports_task_id", "inventory_unlisted_reports", ["task_id"])
    op.create_index("ix_inventory_unlisted_reports_employee_id", "inventory_unlisted_reports", ["employee_id"])
    op.create_index("ix_inventory_unlisted_reports_phone_number", "inventory_unlisted_reports", ["phone_number"])
    op.create_index("ix_inventory_unlisted_reports_created_at", "inventory_unlisted_reports", ["created_at"])

    op.create_table(
        "inventory_task_submissions",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("employee_id", sa.String(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["inventory_tasks.id"]),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("task_id", "employee_id"),
    )
    op.create_index("ix_inventory_task_submissions_submitted_at", "inventory_task_submissions", ["submitted_at"])


def downgrade() -> None:
    op.drop_table("inventory_task_submissions")
    op.drop_table("inventory_unlisted_reports")
    op.drop_table("inventory_task_items")
    op.drop_table("inventory_tasks")
    op.drop_table("transfer_requests")
    op.drop_table("phone_usage_records")
    op.drop_table("phone_assets")
    op.drop_table("permission_grants")
    op.drop_table("admin_users")
    op.drop_table("employees")
    op.drop_table("departments")
    op.drop_table("audit_logs")
    op.drop_table("events")
    bind = op.get_bind()
    for enum in (item_status, task_status, scope_type, transfer_state, phone_status, permission_scope, employment_status):
        enum.drop(bind, checkfirst=True)
