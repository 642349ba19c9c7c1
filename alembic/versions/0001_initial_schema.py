"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "sites",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("site_number", sa.String(length=20), nullable=False),
        sa.Column("site_name", sa.String(length=255), nullable=False),
        sa.Column("pi_name", sa.String(length=255), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=50), server_default=sa.text("'Active'"), nullable=False),
        sa.Column("activated_date", sa.Date(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("site_number"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column(
            "role",
            sa.Enum("admin", "coordinator", "monitor", "auditor", "doctor", name="user_role_enum"),
            nullable=False,
        ),
        sa.Column("site_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )

    op.create_table(
        "subjects",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject_number", sa.String(length=50), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("dob", sa.Date(), nullable=False),
        sa.Column("sex", sa.Enum("Male", "Female", "Other", name="subject_sex_enum"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("Active", "Completed", "Terminated", name="subject_status_enum"),
            server_default=sa.text("'Active'"),
            nullable=False,
        ),
        sa.Column("consent_date", sa.Date(), nullable=False),
        sa.Column("enrollment_date", sa.Date(), nullable=False),
        sa.Column("termination_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subject_number"),
    )
    op.create_index(op.f("ix_subjects_site_id"), "subjects", ["site_id"])

    op.create_table(
        "visits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("visit_name", sa.String(length=100), nullable=False),
        sa.Column("visit_sequence", sa.Integer(), nullable=False),
        sa.Column("expected_offset_days", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("expected_range_days", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("visit_sequence"),
    )

    op.create_table(
        "subject_visits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.Column("visit_id", sa.Integer(), nullable=False),
        sa.Column("expected_date", sa.Date(), nullable=True),
        sa.Column("actual_date", sa.Date(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("Scheduled", "Completed", name="subject_visit_status_enum"),
            server_default=sa.text("'Scheduled'"),
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["visit_id"], ["visits.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subject_id", "visit_id", name="uq_subject_visits_subject_visit"),
    )
    op.create_index(op.f("ix_subject_visits_subject_id"), "subject_visits", ["subject_id"])

    op.create_table(
        "drug_units",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("drug_code", sa.String(length=50), nullable=False),
        sa.Column("lot_number", sa.String(length=50), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("quantity_per_unit", sa.Integer(), server_default=sa.text("30"), nullable=False),
        sa.Column("unit_description", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "Available", "Dispensed", "Returned", "Destroyed", "Missing",
                name="drug_unit_status_enum",
            ),
            server_default=sa.text("'Available'"),
            nullable=False,
        ),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=True),
        sa.Column("assigned_date", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_drug_units_drug_code"), "drug_units", ["drug_code"])
    op.create_index(op.f("ix_drug_units_status"), "drug_units", ["status"])
    op.create_index(op.f("ix_drug_units_site_id"), "drug_units", ["site_id"])

    op.create_table(
        "accountability",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.Column("subject_visit_id", sa.Integer(), nullable=False),
        sa.Column("drug_unit_id", sa.Integer(), nullable=False),
        sa.Column("qty_dispensed", sa.Integer(), nullable=False),
        sa.Column("qty_returned", sa.Integer(), nullable=True),
        sa.Column("date_of_first_dose", sa.Date(), nullable=True),
        sa.Column("date_of_last_dose", sa.Date(), nullable=True),
        sa.Column("pills_per_day", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("reconciliation_date", sa.Date(), nullable=True),
        sa.Column("return_date", sa.Date(), nullable=True),
        sa.Column(
            "return_status",
            sa.Enum(
                "RETURNED", "NOT_RETURNED", "WASTED", "LOST", "DESTROYED",
                name="return_status_enum",
            ),
            nullable=True,
        ),
        sa.Column("days_used", sa.Integer(), nullable=True),
        sa.Column("expected_pills", sa.Integer(), nullable=True),
        sa.Column("pills_used", sa.Integer(), nullable=True),
        sa.Column("compliance_percentage", sa.Numeric(8, 2), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("dispensed_by_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("qty_dispensed >= 0", name="ck_accountability_qty_dispensed_non_negative"),
        sa.CheckConstraint(
            "qty_returned IS NULL OR (qty_returned >= 0 AND qty_returned <= qty_dispensed)",
            name="ck_accountability_qty_returned_range",
        ),
        sa.CheckConstraint("pills_per_day >= 1", name="ck_accountability_pills_per_day_positive"),
        sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["subject_visit_id"], ["subject_visits.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["drug_unit_id"], ["drug_units.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["dispensed_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_accountability_subject_id"), "accountability", ["subject_id"])
    op.create_index(op.f("ix_accountability_subject_visit_id"), "accountability", ["subject_visit_id"])
    op.create_index(op.f("ix_accountability_drug_unit_id"), "accountability", ["drug_unit_id"])
    op.create_index(op.f("ix_accountability_created_at"), "accountability", ["created_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("username", sa.String(length=100), nullable=True),
        sa.Column(
            "action",
            sa.Enum(
                "CREATE", "UPDATE", "DELETE", "DISPENSE", "RETURN", "DESTROY", "LOGIN", "LOGOUT", "VIEW",
                name="audit_action_enum",
            ),
            nullable=False,
        ),
        sa.Column("table_name", sa.String(length=100), nullable=False),
        sa.Column("record_id", sa.String(length=100), nullable=True),
        sa.Column("old_values", sa.Text(), nullable=True),
        sa.Column("new_values", sa.Text(), nullable=True),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_log_user_id"), "audit_log", ["user_id"])
    op.create_index(op.f("ix_audit_log_action"), "audit_log", ["action"])
    op.create_index(op.f("ix_audit_log_table_name"), "audit_log", ["table_name"])
    op.create_index(op.f("ix_audit_log_record_id"), "audit_log", ["record_id"])
    op.create_index(op.f("ix_audit_log_created_at"), "audit_log", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("accountability")
    op.drop_table("drug_units")
    op.drop_table("subject_visits")
    op.drop_table("visits")
    op.drop_table("subjects")
    op.drop_table("users")
    op.drop_table("sites")

    bind = op.get_bind()
    for enum_name in (
        "audit_action_enum",
        "return_status_enum",
        "drug_unit_status_enum",
        "subject_visit_status_enum",
        "subject_status_enum",
        "subject_sex_enum",
        "user_role_enum",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
