"""Initial attendance engine schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

punch_type = postgresql.ENUM("IN", "OUT", name="punch_type", create_type=False)
punch_policy = postgresql.ENUM("FIRST_LAST", "MULTIPLE", "ONLY_FIRST", name="punch_policy", create_type=False)
correction_request_status = postgresql.ENUM(
    "SUBMITTED",
    "IN_REVIEW",
    "APPROVED",
    "REJECTED",
    "ESCALATED",
    name="correction_request_status",
    create_type=False,
)
time_exception_type = postgresql.ENUM(
    "MISSED_PUNCH",
    "LATE",
    "EARLY_LEAVE",
    "SHORT_TIME",
    "OVERTIME_REQUEST",
    "MANUAL_ADJUSTMENT",
    name="time_exception_type",
    create_type=False,
)
time_exception_status = postgresql.ENUM(
    "OPEN",
    "PENDING",
    "APPROVED",
    "REJECTED",
    "ESCALATED",
    "RESOLVED",
    name="time_exception_status",
    create_type=False,
)
shift_assignment_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "CANCELLED",
    "EXPIRED",
    name="shift_assignment_status",
    create_type=False,
)

ENUMS = (
    punch_type,
    punch_policy,
    correction_request_status,
    time_exception_type,
    time_exception_status,
    shift_assignment_status,
)


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=64), nullable=False),
        sa.Column("total_work_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("has_missed_punch", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("finalised_for_payroll", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_audit_columns(),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"])
    op.create_index("ix_attendance_records_created_at", "attendance_records", ["created_at"])
    op.create_index(
        "ix_attendance_records_employee_created",
        "attendance_records",
        ["employee_id", "created_at"],
    )

    op.create_table(
        "attendance_punches",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("attendance_record_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("type", punch_type, nullable=False),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["attendance_record_id"], ["attendance_records.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("attendance_record_id", "position", name="uq_attendance_punches_record_position"),
    )
    op.create_index("ix_attendance_punches_attendance_record_id", "attendance_punches", ["attendance_record_id"])

    op.create_table(
        "attendance_correction_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=64), nullable=False),
        sa.Column("attendance_record_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "status",
            correction_request_status,
            nullable=False,
            server_default=sa.text("'SUBMITTED'"),
        ),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["attendance_record_id"], ["attendance_records.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_attendance_correction_requests_employee_id",
        "attendance_correction_requests",
        ["employee_id"],
    )
    op.create_index(
        "ix_attendance_correction_requests_attendance_record_id",
        "attendance_correction_requests",
        ["attendance_record_id"],
    )
    op.create_index(
        "ix_attendance_correction_requests_status",
        "attendance_correction_requests",
        ["status"],
    )

    op.create_table(
        "time_exceptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=64), nullable=False),
        sa.Column("attendance_record_id", sa.Integer(), nullable=True),
        sa.Column("type", time_exception_type, nullable=False),
        sa.Column("status", time_exception_status, nullable=False, server_default=sa.text("'OPEN'")),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("assigned_to", sa.String(length=255), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["attendance_record_id"], ["attendance_records.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_time_exceptions_employee_id", "time_exceptions", ["employee_id"])
    op.create_index("ix_time_exceptions_attendance_record_id", "time_exceptions", ["attendance_record_id"])
    op.create_index("ix_time_exceptions_type", "time_exceptions", ["type"])
    op.create_index("ix_time_exceptions_status", "time_exceptions", ["status"])
    op.create_index("ix_time_exceptions_assigned_to", "time_exceptions", ["assigned_to"])
    op.create_index("ix_time_exceptions_created_at", "time_exceptions", ["created_at"])

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("start_time", sa.String(length=8), nullable=False),
        sa.Column("end_time", sa.String(length=8), nullable=False),
        sa.Column("grace_in_minutes", sa.Integer(), nullable=True),
        sa.Column("punch_policy", punch_policy, nullable=False, server_default=sa.text("'MULTIPLE'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "shift_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=64), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", shift_assignment_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_shift_assignments_employee_id", "shift_assignments", ["employee_id"])
    op.create_index("ix_shift_assignments_shift_id", "shift_assignments", ["shift_id"])
    op.create_index("ix_shift_assignments_end_date", "shift_assignments", ["end_date"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("entity", sa.String(length=255), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column(
            "change_set",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("shift_assignments")
    op.drop_table("shifts")
    op.drop_table("time_exceptions")
    op.drop_table("attendance_correction_requests")
    op.drop_table("attendance_punches")
    op.drop_table("attendance_records")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
