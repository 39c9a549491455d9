"""approval engine: profiles, approval requests/records, tickets, leave, sla, notifications

Revision ID: 3b7e1c2a9d40
Revises:
Create Date: 2026-10-18 09:12:41.118203
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3b7e1c2a9d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, name: str) -> bool:
    insp = sa.inspect(bind)
    return name in insp.get_table_names()


def _index_exists(bind, table: str, name: str) -> bool:
    insp = sa.inspect(bind)
    for ix in insp.get_indexes(table_name=table):
        if ix.get("name") in {name, op.f(name)}:
            return True
    return False


def upgrade() -> None:
    """Create required tables/indexes if they don't already exist."""
    bind = op.get_bind()

    # ---- PROFILES ----
    if not _table_exists(bind, "profiles"):
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=32), nullable=False),
            sa.Column("department", sa.String(length=128), nullable=True),
            sa.Column("lead_departments", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id", name=op.f("profiles_pkey")),
        )
        op.create_index(op.f("ix_profiles_email"), "profiles", ["email"], unique=False)
        op.create_index(op.f("ix_profiles_role"), "profiles", ["role"], unique=False)
        op.create_index(op.f("ix_profiles_department"), "profiles", ["department"], unique=False)

    # ---- AUDIT LOG ----
    if not _table_exists(bind, "audit_log"):
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("action", sa.String(length=128), nullable=True),
            sa.Column("entity_type", sa.String(length=64), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("actor", sa.String(length=255), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id", name=op.f("audit_log_pkey")),
        )
    if not _index_exists(bind, "audit_log", "ix_audit_log_action"):
        op.create_index(op.f("ix_audit_log_action"), "audit_log", ["action"], unique=False)
    if not _index_exists(bind, "audit_log", "ix_audit_log_entity_id"):
        op.create_index(op.f("ix_audit_log_entity_id"), "audit_log", ["entity_id"], unique=False)

    # ---- APPROVAL REQUESTS / RECORDS ----
    if not _table_exists(bind, "approval_requests"):
        op.create_table(
            "approval_requests",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("workflow_type", sa.String(length=32), nullable=False),
            sa.Column("subject_type", sa.String(length=64), nullable=False),
            sa.Column("subject_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False),
            sa.Column("current_stage", sa.String(length=64), nullable=True),
            sa.Column("requester_id", sa.String(length=64), nullable=False),
            sa.Column("assignee_id", sa.String(length=64), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=True),
            sa.Column("priority", sa.String(length=16), nullable=True),
            sa.Column("department", sa.String(length=128), nullable=True),
            sa.Column("category", sa.String(length=128), nullable=True),
            sa.Column("context", sa.JSON(), nullable=True),
            sa.Column("rejected_stage", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["requester_id"], ["profiles.id"], name=op.f("approval_requests_requester_id_fkey")),
            sa.ForeignKeyConstraint(["assignee_id"], ["profiles.id"], name=op.f("approval_requests_assignee_id_fkey")),
            sa.PrimaryKeyConstraint("id", name=op.f("approval_requests_pkey")),
        )
        op.create_index(op.f("ix_approval_requests_workflow_type"), "approval_requests", ["workflow_type"], unique=False)
        op.create_index(op.f("ix_approval_requests_subject_id"), "approval_requests", ["subject_id"], unique=False)
        op.create_index(op.f("ix_approval_requests_status"), "approval_requests", ["status"], unique=False)
        op.create_index(op.f("ix_approval_requests_requester_id"), "approval_requests", ["requester_id"], unique=False)

    if not _table_exists(bind, "approval_records"):
        op.create_table(
            "approval_records",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("request_id", sa.Integer(), nullable=False),
            sa.Column("stage", sa.String(length=64), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("approver_id", sa.String(length=64), nullable=True),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("evidence_override", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("requested_at", sa.DateTime(), nullable=False),
            sa.Column("decided_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["request_id"], ["approval_requests.id"], name=op.f("approval_records_request_id_fkey")),
            sa.ForeignKeyConstraint(["approver_id"], ["profiles.id"], name=op.f("approval_records_approver_id_fkey")),
            sa.PrimaryKeyConstraint("id", name=op.f("approval_records_pkey")),
        )
        op.create_index(op.f("ix_approval_records_request_id"), "approval_records", ["request_id"], unique=False)
    if not _index_exists(bind, "approval_records", "uq_approval_records_one_pending"):
        # at most one pending record per request
        op.create_index(
            "uq_approval_records_one_pending",
            "approval_records",
            ["request_id"],
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        )

    # ---- HELP DESK ----
    if not _table_exists(bind, "help_desk_tickets"):
        op.create_table(
            "help_desk_tickets",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("ticket_number", sa.String(length=32), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("request_type", sa.String(length=32), nullable=False),
            sa.Column("category", sa.String(length=128), nullable=True),
            sa.Column("service_department", sa.String(length=128), nullable=False),
            sa.Column("priority", sa.String(length=16), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False),
            sa.Column("requester_id", sa.String(length=64), nullable=False),
            sa.Column("assigned_to", sa.String(length=64), nullable=True),
            sa.Column("assigned_by", sa.String(length=64), nullable=True),
            sa.Column("approval_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("approval_request_id", sa.Integer(), nullable=True),
            sa.Column("procurement_reason", sa.Text(), nullable=True),
            sa.Column("sla_target_at", sa.DateTime(), nullable=True),
            sa.Column("submitted_at", sa.DateTime(), nullable=False),
            sa.Column("assigned_at", sa.DateTime(), nullable=True),
            sa.Column("paused_at", sa.DateTime(), nullable=True),
            sa.Column("resumed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["requester_id"], ["profiles.id"], name=op.f("help_desk_tickets_requester_id_fkey")),
            sa.ForeignKeyConstraint(["assigned_to"], ["profiles.id"], name=op.f("help_desk_tickets_assigned_to_fkey")),
            sa.ForeignKeyConstraint(["assigned_by"], ["profiles.id"], name=op.f("help_desk_tickets_assigned_by_fkey")),
            sa.ForeignKeyConstraint(["approval_request_id"], ["approval_requests.id"],
                                    name=op.f("help_desk_tickets_approval_request_id_fkey")),
            sa.PrimaryKeyConstraint("id", name=op.f("help_desk_tickets_pkey")),
        )
        op.create_index(op.f("ix_help_desk_tickets_ticket_number"), "help_desk_tickets", ["ticket_number"], unique=True)
        op.create_index(op.f("ix_help_desk_tickets_service_department"), "help_desk_tickets", ["service_department"], unique=False)
        op.create_index(op.f("ix_help_desk_tickets_status"), "help_desk_tickets", ["status"], unique=False)
        op.create_index(op.f("ix_help_desk_tickets_requester_id"), "help_desk_tickets", ["requester_id"], unique=False)
        op.create_index(op.f("ix_help_desk_tickets_assigned_to"), "help_desk_tickets", ["assigned_to"], unique=False)

    if not _table_exists(bind, "help_desk_events"):
        op.create_table(
            "help_desk_events",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("ticket_id", sa.Integer(), nullable=False),
            sa.Column("actor_id", sa.String(length=64), nullable=True),
            sa.Column("event_type", sa.String(length=64), nullable=False),
            sa.Column("old_status", sa.String(length=32), nullable=True),
            sa.Column("new_status", sa.String(length=32), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["ticket_id"], ["help_desk_tickets.id"], name=op.f("help_desk_events_ticket_id_fkey")),
            sa.PrimaryKeyConstraint("id", name=op.f("help_desk_events_pkey")),
        )
        op.create_index(op.f("ix_help_desk_events_ticket_id"), "help_desk_events", ["ticket_id"], unique=False)

    # ---- LEAVE ----
    if not _table_exists(bind, "leave_types"):
        op.create_table(
            "leave_types",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("code", sa.String(length=32), nullable=False),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("max_days", sa.Integer(), nullable=False, server_default="0"),
            sa.PrimaryKeyConstraint("id", name=op.f("leave_types_pkey")),
            sa.UniqueConstraint("code", name=op.f("leave_types_code_key")),
        )

    if not _table_exists(bind, "leave_policies"):
        op.create_table(
            "leave_policies",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("leave_type_id", sa.Integer(), nullable=False),
            sa.Column("annual_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("notice_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_days_per_request", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("medical_certificate_after_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("required_documents", sa.JSON(), nullable=True),
            sa.Column("override_allowed", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["leave_type_id"], ["leave_types.id"], name=op.f("leave_policies_leave_type_id_fkey")),
            sa.PrimaryKeyConstraint("id", name=op.f("leave_policies_pkey")),
            sa.UniqueConstraint("leave_type_id", name=op.f("leave_policies_leave_type_id_key")),
        )

    if not _table_exists(bind, "leave_requests"):
        op.create_table(
            "leave_requests",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("leave_type_id", sa.Integer(), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("days_count", sa.Integer(), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("reliever_id", sa.String(length=64), nullable=False),
            sa.Column("supervisor_id", sa.String(length=64), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False),
            sa.Column("required_documents", sa.JSON(), nullable=True),
            sa.Column("approval_request_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("decided_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], name=op.f("leave_requests_user_id_fkey")),
            sa.ForeignKeyConstraint(["leave_type_id"], ["leave_types.id"], name=op.f("leave_requests_leave_type_id_fkey")),
            sa.ForeignKeyConstraint(["reliever_id"], ["profiles.id"], name=op.f("leave_requests_reliever_id_fkey")),
            sa.ForeignKeyConstraint(["supervisor_id"], ["profiles.id"], name=op.f("leave_requests_supervisor_id_fkey")),
            sa.ForeignKeyConstraint(["approval_request_id"], ["approval_requests.id"],
                                    name=op.f("leave_requests_approval_request_id_fkey")),
            sa.PrimaryKeyConstraint("id", name=op.f("leave_requests_pkey")),
        )
        op.create_index(op.f("ix_leave_requests_user_id"), "leave_requests", ["user_id"], unique=False)
        op.create_index(op.f("ix_leave_requests_status"), "leave_requests", ["status"], unique=False)

    if not _table_exists(bind, "leave_evidence"):
        op.create_table(
            "leave_evidence",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("leave_request_id", sa.Integer(), nullable=False),
            sa.Column("document_type", sa.String(length=64), nullable=False),
            sa.Column("file_url", sa.String(length=1000), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("uploaded_by", sa.String(length=64), nullable=True),
            sa.Column("verified_by", sa.String(length=64), nullable=True),
            sa.Column("verified_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["leave_request_id"], ["leave_requests.id"],
                                    name=op.f("leave_evidence_leave_request_id_fkey")),
            sa.PrimaryKeyConstraint("id", name=op.f("leave_evidence_pkey")),
        )
        op.create_index(op.f("ix_leave_evidence_leave_request_id"), "leave_evidence", ["leave_request_id"], unique=False)

    if not _table_exists(bind, "leave_balances"):
        op.create_table(
            "leave_balances",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("leave_type_id", sa.Integer(), nullable=False),
            sa.Column("allocated_days", sa.Float(), nullable=False, server_default="0"),
            sa.Column("used_days", sa.Float(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], name=op.f("leave_balances_user_id_fkey")),
            sa.ForeignKeyConstraint(["leave_type_id"], ["leave_types.id"], name=op.f("leave_balances_leave_type_id_fkey")),
            sa.PrimaryKeyConstraint("id", name=op.f("leave_balances_pkey")),
            sa.UniqueConstraint("user_id", "leave_type_id", name="uq_leave_balance_user_type"),
        )
        op.create_index(op.f("ix_leave_balances_user_id"), "leave_balances", ["user_id"], unique=False)

    # ---- SLA ----
    if not _table_exists(bind, "approval_sla_policies"):
        op.create_table(
            "approval_sla_policies",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("workflow_type", sa.String(length=32), nullable=False),
            sa.Column("stage", sa.String(length=64), nullable=False),
            sa.Column("due_hours", sa.Integer(), nullable=False, server_default="24"),
            sa.Column("reminder_hours_before", sa.Integer(), nullable=False, server_default="4"),
            sa.Column("escalate_to_role", sa.String(length=32), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id", name=op.f("approval_sla_policies_pkey")),
            sa.UniqueConstraint("workflow_type", "stage", name="uq_sla_workflow_stage"),
        )

    # ---- NOTIFICATIONS ----
    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("type", sa.String(length=32), nullable=False),
            sa.Column("category", sa.String(length=32), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("message", sa.String(length=1000), nullable=False),
            sa.Column("priority", sa.String(length=16), nullable=True),
            sa.Column("link_url", sa.String(length=255), nullable=True),
            sa.Column("actor_id", sa.String(length=64), nullable=True),
            sa.Column("entity_type", sa.String(length=64), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("rich_content", sa.JSON(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id", name=op.f("notifications_pkey")),
        )
        op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)


def downgrade() -> None:
    """Drop the same objects to roll back this revision."""
    # Drop in reverse dependency order
    op.drop_table("notifications")
    op.drop_table("approval_sla_policies")
    op.drop_table("leave_balances")
    op.drop_table("leave_evidence")
    op.drop_table("leave_requests")
    op.drop_table("leave_policies")
    op.drop_table("leave_types")
    op.drop_table("help_desk_events")
    op.drop_table("help_desk_tickets")
    op.drop_index("uq_approval_records_one_pending", table_name="approval_records")
    op.drop_table("approval_records")
    op.drop_table("approval_requests")
    op.drop_table("audit_log")
    op.drop_table("profiles")
