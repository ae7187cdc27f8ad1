"""
Initial schema: tenants, users and permissions, activity trail, flight
records, technical publications, SMS reports, audits and stock inventory.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2025-03-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _company_id() -> sa.Column:
    return sa.Column(
        "company_id",
        sa.String(length=36),
        sa.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )


def _user_ref(name: str) -> sa.Column:
    return sa.Column(name, sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False)


def _attachment_table(table: str, parents: Sequence[tuple]) -> None:
    """Create an attachment table; `parents` is [(column, target_table, nullable)]."""
    op.create_table(
        table,
        _id(),
        _company_id(),
        *[
            sa.Column(column, sa.String(length=36), sa.ForeignKey(f"{target}.id", ondelete="CASCADE"), nullable=nullable)
            for column, target, nullable in parents
        ],
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_key", sa.String(length=1024), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("file_type", sa.String(length=128), nullable=False),
        _user_ref("uploaded_by"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    _indexes(table, "company_id", *[column for column, _, _ in parents])


def _indexes(table: str, *columns: str) -> None:
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column])


PERMISSION_FLAGS = (
    ("can_view_flight_records", True),
    ("can_add_flight_records", True),
    ("can_export_flight_records", False),
    ("can_edit_flight_records", False),
    ("can_export_pdf_flight_records", True),
    ("can_delete_flight_records", False),
    ("can_add_temporal_flight_records", True),
    ("can_delete_pending_flights", False),
    ("can_view_stock_inventory", True),
    ("can_generate_stock_report", True),
    ("can_add_stock_item", False),
    ("can_generate_stock_pdf", True),
    ("can_delete_stock_record", False),
    ("can_view_incoming_inspections", True),
    ("can_add_incoming_inspections", False),
    ("can_delete_incoming_inspections", False),
    ("can_configure_temperature_ranges", False),
    ("can_add_temperature_record", False),
    ("can_delete_temperature_record", False),
    ("can_see_audit_management", False),
)


def upgrade() -> None:
    # ------------------------------------------------------------------
    # Tenants and accounts
    # ------------------------------------------------------------------
    op.create_table(
        "companies",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_companies_code", "companies", ["code"], unique=True)

    op.create_table(
        "users",
        _id(),
        _company_id(),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column(
            "privilege",
            _enum("user_privilege", "ADMIN", "MANAGER", "TECHNICIAN", "READER"),
            nullable=False,
        ),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    _indexes("users", "company_id", "email", "privilege", "is_active")

    op.create_table(
        "user_permissions",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        _company_id(),
        *[
            sa.Column(flag, sa.Boolean(), nullable=False, server_default=sa.true() if default else sa.false())
            for flag, default in PERMISSION_FLAGS
        ],
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_user_permissions_user"),
    )
    _indexes("user_permissions", "user_id", "company_id")

    op.create_table(
        "user_activities",
        _id(),
        _company_id(),
        _user_ref("user_id"),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("resource_type", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=True),
        sa.Column("resource_title", sa.String(length=255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=False, server_default="unknown"),
        sa.Column("user_agent", sa.String(length=512), nullable=False, server_default="unknown"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    _indexes("user_activities", "company_id", "user_id", "action", "resource_type", "resource_id", "created_at")
    op.create_index("ix_user_activities_company_time", "user_activities", ["company_id", sa.text("created_at DESC")])
    op.create_index("ix_user_activities_user_time", "user_activities", ["user_id", sa.text("created_at DESC")])

    # ------------------------------------------------------------------
    # Flight records
    # ------------------------------------------------------------------
    op.create_table(
        "flight_records",
        _id(),
        _company_id(),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("airline", sa.String(length=128), nullable=False),
        sa.Column("fleet", sa.String(length=64), nullable=False),
        sa.Column("flight_number", sa.String(length=32), nullable=True),
        sa.Column("tail", sa.String(length=32), nullable=True),
        sa.Column("station", sa.String(length=16), nullable=False),
        sa.Column("service", sa.String(length=64), nullable=True),
        sa.Column("block_time", sa.String(length=16), nullable=True),
        sa.Column("out_time", sa.String(length=16), nullable=True),
        sa.Column("has_defect", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("log_page_no", sa.String(length=64), nullable=True),
        sa.Column("discrepancy_note", sa.Text(), nullable=True),
        sa.Column("rectification_note", sa.Text(), nullable=True),
        sa.Column("system_affected", sa.String(length=128), nullable=True),
        sa.Column("defect_status", sa.String(length=32), nullable=True),
        sa.Column("technician", sa.String(length=255), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("is_temporary", sa.Boolean(), nullable=False, server_default=sa.false()),
        _user_ref("created_by"),
        *_timestamps(),
    )
    _indexes("flight_records", "company_id", "date", "airline", "tail", "station", "has_defect", "is_temporary", "created_by")
    op.create_index("ix_flight_records_company_date", "flight_records", ["company_id", sa.text("date DESC")])
    op.create_index("ix_flight_records_company_station", "flight_records", ["company_id", "station"])
    _attachment_table("flight_record_attachments", [("flight_record_id", "flight_records", False)])

    # ------------------------------------------------------------------
    # Technical publications
    # ------------------------------------------------------------------
    op.create_table(
        "technical_publications",
        _id(),
        _company_id(),
        sa.Column("revision_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("manual_description", sa.String(length=255), nullable=False),
        sa.Column("revision_number", sa.String(length=64), nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        _user_ref("uploaded_by"),
        *_timestamps(),
    )
    _indexes("technical_publications", "company_id", "revision_date", "uploaded_by")
    op.create_index(
        "ix_technical_publications_company_revision_date",
        "technical_publications",
        ["company_id", sa.text("revision_date DESC")],
    )
    _attachment_table("technical_publication_attachments", [("publication_id", "technical_publications", False)])

    # Revisions keep no FK to the publication so history survives its deletion.
    op.create_table(
        "technical_publication_revisions",
        _id(),
        _company_id(),
        sa.Column("publication_id", sa.String(length=36), nullable=False),
        sa.Column(
            "change_type",
            _enum("tp_revision_change_type", "CREATED", "UPDATED", "ATTACHMENT_REPLACED"),
            nullable=False,
        ),
        sa.Column("change_description", sa.Text(), nullable=False),
        sa.Column("changed_fields", sa.JSON(), nullable=True),
        sa.Column("previous_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        _user_ref("modified_by"),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False),
    )
    _indexes("technical_publication_revisions", "company_id", "publication_id", "modified_by", "modified_at")
    op.create_index(
        "ix_tp_revisions_publication_time",
        "technical_publication_revisions",
        ["publication_id", sa.text("modified_at DESC")],
    )

    # ------------------------------------------------------------------
    # SMS reports
    # ------------------------------------------------------------------
    op.create_table(
        "sms_reports",
        _id(),
        _company_id(),
        sa.Column("report_number", sa.String(length=32), nullable=False),
        _user_ref("user_id"),
        sa.Column("reporter_name", sa.String(length=255), nullable=True),
        sa.Column("reporter_email", sa.String(length=255), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("time_of_event", sa.String(length=16), nullable=True),
        sa.Column("report_title", sa.String(length=255), nullable=False),
        sa.Column("report_description", sa.Text(), nullable=False),
        sa.Column("has_attachments", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "report_number", name="uq_sms_reports_company_number"),
    )
    _indexes("sms_reports", "company_id", "report_number", "user_id", "date", "created_at")
    _attachment_table("sms_report_attachments", [("sms_report_id", "sms_reports", False)])

    # ------------------------------------------------------------------
    # Audits
    # ------------------------------------------------------------------
    priority = ("LOW", "MEDIUM", "HIGH", "URGENT")
    op.create_table(
        "audits",
        _id(),
        _company_id(),
        sa.Column("audit_number", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "audit_type",
            _enum("audit_type", "INTERNAL", "EXTERNAL", "SAFETY", "COMPLIANCE", "QUALITY", "REGULATORY", "CUSTOMER"),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("audit_status", "PLANNED", "IN_PROGRESS", "COMPLETED", "CANCELLED", "DEFERRED"),
            nullable=False,
        ),
        sa.Column("priority", _enum("audit_priority", *priority), nullable=False),
        sa.Column("department", sa.String(length=128), nullable=True),
        sa.Column("location", sa.String(length=128), nullable=True),
        sa.Column("lead_auditor", sa.String(length=255), nullable=True),
        sa.Column("audit_team", sa.JSON(), nullable=True),
        sa.Column("auditee", sa.String(length=255), nullable=True),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("objectives", sa.Text(), nullable=True),
        sa.Column("planned_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("planned_end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("compliance_rate", sa.Float(), nullable=True),
        _user_ref("created_by"),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "audit_number", name="uq_audits_company_number"),
    )
    _indexes("audits", "company_id", "audit_type", "planned_start_date")
    op.create_index("ix_audits_company_status", "audits", ["company_id", "status"])

    op.create_table(
        "audit_findings",
        _id(),
        _company_id(),
        sa.Column("audit_id", sa.String(length=36), sa.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False),
        sa.Column("finding_number", sa.String(length=16), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "severity",
            _enum("finding_severity", "CRITICAL", "MAJOR", "MINOR", "NON_CRITICAL", "OBSERVATION"),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("finding_status", "OPEN", "IN_PROGRESS", "CLOSED", "VERIFIED", "DEFERRED"),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=128), nullable=True),
        sa.Column("department", sa.String(length=128), nullable=True),
        sa.Column("requirement", sa.Text(), nullable=True),
        sa.Column("target_close_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("identified_by", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("audit_id", "finding_number", name="uq_audit_findings_audit_number"),
    )
    _indexes("audit_findings", "company_id", "audit_id", "status")

    op.create_table(
        "corrective_actions",
        _id(),
        _company_id(),
        sa.Column(
            "finding_id",
            sa.String(length=36),
            sa.ForeignKey("audit_findings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action_number", sa.String(length=16), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "action_type",
            _enum("corrective_action_type", "CORRECTIVE", "PREVENTIVE", "IMPROVEMENT"),
            nullable=False,
        ),
        sa.Column("priority", _enum("corrective_action_priority", *priority), nullable=False),
        sa.Column(
            "status",
            _enum("corrective_action_status", "ASSIGNED", "IN_PROGRESS", "COMPLETED", "VERIFIED", "OVERDUE"),
            nullable=False,
        ),
        sa.Column("assigned_to", sa.String(length=255), nullable=True),
        sa.Column("assigned_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("target_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.String(length=255), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("finding_id", "action_number", name="uq_corrective_actions_finding_number"),
    )
    _indexes("corrective_actions", "company_id", "finding_id", "status")

    _attachment_table(
        "audit_attachments",
        [
            ("audit_id", "audits", True),
            ("finding_id", "audit_findings", True),
            ("corrective_action_id", "corrective_actions", True),
        ],
    )

    # ------------------------------------------------------------------
    # Stock inventory
    # ------------------------------------------------------------------
    op.create_table(
        "stock_items",
        _id(),
        _company_id(),
        sa.Column("part_no", sa.String(length=128), nullable=False),
        sa.Column("serial_no", sa.String(length=128), nullable=True),
        sa.Column("description", sa.String(length=512), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("type", sa.String(length=64), nullable=True),
        sa.Column("custom_type", sa.String(length=128), nullable=True),
        sa.Column("location", sa.String(length=64), nullable=True),
        sa.Column("custom_location", sa.String(length=128), nullable=True),
        sa.Column("station", sa.String(length=16), nullable=True),
        sa.Column("custom_station", sa.String(length=64), nullable=True),
        sa.Column("owner", sa.String(length=64), nullable=True),
        sa.Column("custom_owner", sa.String(length=128), nullable=True),
        sa.Column("has_expire_date", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expire_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_inspection", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("inspection_result", sa.String(length=32), nullable=True),
        sa.Column("incoming_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("technician", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _user_ref("created_by"),
        *_timestamps(),
    )
    _indexes("stock_items", "company_id", "serial_no")
    op.create_index("ix_stock_items_company_part", "stock_items", ["company_id", "part_no"])
    op.create_index("ix_stock_items_company_created", "stock_items", ["company_id", "created_at"])
    _attachment_table("stock_item_attachments", [("stock_item_id", "stock_items", False)])

    op.create_table(
        "stock_usages",
        _id(),
        _company_id(),
        sa.Column(
            "stock_item_id",
            sa.String(length=36),
            sa.ForeignKey("stock_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("quantity_used", sa.Integer(), nullable=False),
        sa.Column("remaining_quantity", sa.Integer(), nullable=False),
        _user_ref("used_by"),
        sa.Column("used_by_name", sa.String(length=255), nullable=True),
        sa.Column("purpose", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False),
    )
    _indexes("stock_usages", "company_id", "stock_item_id", "used_at")


def downgrade() -> None:
    for table in (
        "stock_usages",
        "stock_item_attachments",
        "stock_items",
        "audit_attachments",
        "corrective_actions",
        "audit_findings",
        "audits",
        "sms_report_attachments",
        "sms_reports",
        "technical_publication_revisions",
        "technical_publication_attachments",
        "technical_publications",
        "flight_record_attachments",
        "flight_records",
        "user_activities",
        "user_permissions",
        "users",
        "companies",
    ):
        op.drop_table(table)
