from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_engine.db import Base
from attendance_engine.timeutils import utc_now

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class PunchType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


class PunchPolicy(str, enum.Enum):
    FIRST_LAST = "FIRST_LAST"
    MULTIPLE = "MULTIPLE"
    ONLY_FIRST = "ONLY_FIRST"


class RoundingStrategy(str, enum.Enum):
    NEAREST = "NEAREST"
    CEILING = "CEILING"
    FLOOR = "FLOOR"


class CorrectionRequestStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"


class TimeExceptionType(str, enum.Enum):
    MISSED_PUNCH = "MISSED_PUNCH"
    LATE = "LATE"
    EARLY_LEAVE = "EARLY_LEAVE"
    SHORT_TIME = "SHORT_TIME"
    OVERTIME_REQUEST = "OVERTIME_REQUEST"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"


class TimeExceptionStatus(str, enum.Enum):
    OPEN = "OPEN"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"


class ShiftAssignmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Whole minutes, rounded half-up from the punch pairs; payroll sees no seconds.
    total_work_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    has_missed_punch: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    finalised_for_payroll: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=utc_now,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    punches: Mapped[list[AttendancePunch]] = relationship(
        back_populates="attendance_record",
        cascade="all, delete-orphan",
        order_by="AttendancePunch.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_attendance_records_employee_created", "employee_id", "created_at"),
    )


class AttendancePunch(Base):
    __tablename__ = "attendance_punches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attendance_record_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[PunchType] = mapped_column(Enum(PunchType, name="punch_type"), nullable=False)
    time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    attendance_record: Mapped[AttendanceRecord] = relationship(back_populates="punches")

    __table_args__ = (
        UniqueConstraint("attendance_record_id", "position", name="uq_attendance_punches_record_position"),
    )


class AttendanceCorrectionRequest(Base):
    __tablename__ = "attendance_correction_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    attendance_record_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[CorrectionRequestStatus] = mapped_column(
        Enum(CorrectionRequestStatus, name="correction_request_status"),
        nullable=False,
        default=CorrectionRequestStatus.SUBMITTED,
        server_default=text("'SUBMITTED'"),
        index=True,
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=utc_now,
    )


class TimeException(Base):
    __tablename__ = "time_exceptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    attendance_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("attendance_records.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    type: Mapped[TimeExceptionType] = mapped_column(
        Enum(TimeExceptionType, name="time_exception_type"),
        nullable=False,
        index=True,
    )
    status: Mapped[TimeExceptionStatus] = mapped_column(
        Enum(TimeExceptionStatus, name="time_exception_status"),
        nullable=False,
        default=TimeExceptionStatus.OPEN,
        server_default=text("'OPEN'"),
        index=True,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=utc_now,
    )


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[str] = mapped_column(String(8), nullable=False)
    end_time: Mapped[str] = mapped_column(String(8), nullable=False)
    grace_in_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    punch_policy: Mapped[PunchPolicy] = mapped_column(
        Enum(PunchPolicy, name="punch_policy"),
        nullable=False,
        default=PunchPolicy.MULTIPLE,
        server_default=text("'MULTIPLE'"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    assignments: Mapped[list[ShiftAssignment]] = relationship(back_populates="shift")


class ShiftAssignment(Base):
    __tablename__ = "shift_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    shift_id: Mapped[int] = mapped_column(ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    status: Mapped[ShiftAssignmentStatus] = mapped_column(
        Enum(ShiftAssignmentStatus, name="shift_assignment_status"),
        nullable=False,
        default=ShiftAssignmentStatus.PENDING,
        server_default=text("'PENDING'"),
    )

    shift: Mapped[Shift] = relationship(back_populates="assignments")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    entity: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    change_set: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
