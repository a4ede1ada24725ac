from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from attendance_engine.audit import AuditSink, log_time_management_change
from attendance_engine.locks import EmployeeLockRegistry, get_lock_registry
from attendance_engine.models import (
    Shift,
    ShiftAssignment,
    ShiftAssignmentStatus,
    TimeException,
    TimeExceptionStatus,
    TimeExceptionType,
)
from attendance_engine.services.time_exceptions import build_time_exception, count_time_exceptions
from attendance_engine.settings import get_settings
from attendance_engine.timeutils import minutes_of_day_utc, normalize_ts, parse_hhmm, utc_day_end, utc_day_start

logger = logging.getLogger("attendance_engine.lateness")


def trigger_lateness_disciplinary(
    audit: AuditSink,
    *,
    employee_id: str,
    actor_id: str,
    action: str | None = None,
) -> dict[str, str]:
    log_time_management_change(
        audit,
        "LATENESS_DISCIPLINARY",
        {"employee_id": employee_id, "action": action or "MANUAL_TRIGGER"},
        actor_id,
    )
    return {"message": "Disciplinary action logged."}


def monitor_repeated_lateness(
    db: Session,
    *,
    employee_id: str,
    actor_id: str,
    audit: AuditSink,
    threshold: int | None = None,
    locks: EmployeeLockRegistry | None = None,
) -> dict[str, Any]:
    if threshold is None:
        threshold = get_settings().default_lateness_threshold
    registry = locks or get_lock_registry()

    with registry.hold(employee_id):
        lateness_count = count_time_exceptions(
            db,
            employee_id=employee_id,
            exception_type=TimeExceptionType.LATE,
        )
        exceeded = lateness_count >= threshold
        if exceeded:
            trigger_lateness_disciplinary(
                audit,
                employee_id=employee_id,
                action="AUTO_ESCALATION",
                actor_id=actor_id,
            )

    logger.info(
        "lateness_monitored",
        extra={"employee_id": employee_id, "count": lateness_count, "threshold": threshold, "exceeded": exceeded},
    )
    return {
        "employee_id": employee_id,
        "count": lateness_count,
        "threshold": threshold,
        "exceeded": exceeded,
    }


def auto_create_lateness_exception(
    db: Session,
    *,
    employee_id: str,
    attendance_record_id: int | None,
    late_minutes: int,
    actor_id: str,
    audit: AuditSink,
    assigned_to: str | None = None,
) -> TimeException:
    exception = build_time_exception(
        exception_type=TimeExceptionType.LATE,
        employee_id=employee_id,
        attendance_record_id=attendance_record_id,
        reason=f"Auto-generated: Employee was {late_minutes} minutes late",
        actor_id=actor_id,
        assigned_to=assigned_to,
    )
    db.add(exception)
    db.commit()

    log_time_management_change(
        audit,
        "AUTO_LATENESS_EXCEPTION_CREATED",
        {
            "employee_id": employee_id,
            "attendance_record_id": attendance_record_id,
            "late_minutes": late_minutes,
        },
        actor_id,
    )
    return exception


def find_active_shift(db: Session, *, employee_id: str, day: date) -> Shift | None:
    return db.scalars(
        select(Shift)
        .join(ShiftAssignment, ShiftAssignment.shift_id == Shift.id)
        .where(
            ShiftAssignment.employee_id == employee_id,
            ShiftAssignment.status == ShiftAssignmentStatus.APPROVED,
            ShiftAssignment.start_date <= day,
            or_(ShiftAssignment.end_date.is_(None), ShiftAssignment.end_date >= day),
            Shift.is_active.is_(True),
        )
        .order_by(ShiftAssignment.start_date.desc(), ShiftAssignment.id.desc())
        .limit(1)
    ).first()


def calculate_late_minutes(shift_start: str, grace_minutes: int, punch_time: datetime) -> int:
    return minutes_of_day_utc(punch_time) - (parse_hhmm(shift_start) + grace_minutes)


def detect_clock_in_lateness(
    db: Session,
    *,
    employee_id: str,
    attendance_record_id: int | None,
    punch_time: datetime,
    actor_id: str,
    audit: AuditSink,
) -> TimeException | None:
    punch_time = normalize_ts(punch_time)
    shift = find_active_shift(db, employee_id=employee_id, day=punch_time.date())
    if shift is None or not shift.start_time:
        logger.info("lateness_check_skipped", extra={"employee_id": employee_id, "reason": "no_active_shift"})
        return None

    grace_minutes = shift.grace_in_minutes or get_settings().default_grace_minutes
    try:
        late_minutes = calculate_late_minutes(shift.start_time, grace_minutes, punch_time)
    except ValueError:
        logger.warning(
            "lateness_check_skipped",
            extra={"employee_id": employee_id, "reason": "invalid_shift_start", "shift_id": shift.id},
        )
        return None

    if late_minutes <= 0:
        return None

    logger.info(
        "clock_in_late",
        extra={"employee_id": employee_id, "late_minutes": late_minutes, "shift_id": shift.id},
    )
    return auto_create_lateness_exception(
        db,
        employee_id=employee_id,
        attendance_record_id=attendance_record_id,
        late_minutes=late_minutes,
        actor_id=actor_id,
        audit=audit,
        assigned_to=actor_id,
    )


def get_employee_lateness_history(
    db: Session,
    *,
    employee_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
) -> dict[str, Any]:
    stmt = select(TimeException).where(
        TimeException.employee_id == employee_id,
        TimeException.type == TimeExceptionType.LATE,
    )
    if start_date is not None:
        stmt = stmt.where(TimeException.created_at >= utc_day_start(start_date))
    if end_date is not None:
        stmt = stmt.where(TimeException.created_at <= utc_day_end(end_date))
    records = list(
        db.scalars(stmt.order_by(TimeException.created_at.desc(), TimeException.id.desc()).limit(limit)).all()
    )

    unresolved = sum(
        1
        for item in records
        if item.status in (TimeExceptionStatus.OPEN, TimeExceptionStatus.PENDING, TimeExceptionStatus.ESCALATED)
    )
    return {
        "employee_id": employee_id,
        "start_date": start_date,
        "end_date": end_date,
        "summary": {
            "total_occurrences": len(records),
            "unresolved": unresolved,
        },
        "records": records,
    }
