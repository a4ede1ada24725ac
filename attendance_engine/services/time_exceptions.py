from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from attendance_engine.audit import AuditSink, log_time_management_change
from attendance_engine.errors import EngineError, NotFoundError
from attendance_engine.models import TimeException, TimeExceptionStatus, TimeExceptionType
from attendance_engine.services.workflow import (
    OPEN_TIME_EXCEPTION_STATUSES,
    TIME_EXCEPTION_TRANSITIONS,
    ensure_transition,
)
from attendance_engine.timeutils import normalize_ts, utc_day_end, utc_day_start, utc_now

logger = logging.getLogger("attendance_engine.time_exceptions")

REVIEWABLE_STATUSES = (
    TimeExceptionStatus.OPEN,
    TimeExceptionStatus.PENDING,
    TimeExceptionStatus.ESCALATED,
)


def build_time_exception(
    *,
    exception_type: TimeExceptionType,
    employee_id: str,
    attendance_record_id: int | None,
    reason: str | None,
    actor_id: str,
    assigned_to: str | None = None,
) -> TimeException:
    return TimeException(
        employee_id=employee_id,
        attendance_record_id=attendance_record_id,
        type=TimeExceptionType(exception_type),
        status=TimeExceptionStatus.OPEN,
        reason=reason,
        assigned_to=assigned_to,
        created_by=actor_id,
        updated_by=actor_id,
    )


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n\n{note}" if existing else note


def _transition(
    exception: TimeException,
    target: TimeExceptionStatus,
    *,
    actor_id: str,
) -> TimeExceptionStatus:
    previous = exception.status
    ensure_transition(TIME_EXCEPTION_TRANSITIONS, previous, target, entity="Time exception")
    exception.status = target
    exception.updated_by = actor_id
    return previous


def get_time_exception(db: Session, time_exception_id: int) -> TimeException:
    exception = db.get(TimeException, time_exception_id)
    if exception is None:
        raise NotFoundError("Time exception not found")
    return exception


def create_time_exception(
    db: Session,
    *,
    exception_type: TimeExceptionType | str,
    employee_id: str,
    attendance_record_id: int | None,
    reason: str | None,
    actor_id: str,
    audit: AuditSink,
    assigned_to: str | None = None,
) -> TimeException:
    exception = build_time_exception(
        exception_type=TimeExceptionType(exception_type),
        employee_id=employee_id,
        attendance_record_id=attendance_record_id,
        reason=reason,
        actor_id=actor_id,
        assigned_to=assigned_to,
    )
    db.add(exception)
    db.commit()

    log_time_management_change(
        audit,
        "TIME_EXCEPTION_CREATED",
        {
            "time_exception_id": exception.id,
            "employee_id": employee_id,
            "type": exception.type.value,
            "attendance_record_id": attendance_record_id,
        },
        actor_id,
    )
    return exception


def list_time_exceptions_by_employee(
    db: Session,
    *,
    employee_id: str,
    status: TimeExceptionStatus | str | None = None,
) -> list[TimeException]:
    stmt = select(TimeException).where(TimeException.employee_id == employee_id)
    if status:
        stmt = stmt.where(TimeException.status == TimeExceptionStatus(status))
    return list(db.scalars(stmt.order_by(TimeException.created_at.desc(), TimeException.id.desc())).all())


def list_time_exceptions(
    db: Session,
    *,
    status: TimeExceptionStatus | str | None = None,
    exception_type: TimeExceptionType | str | None = None,
    employee_id: str | None = None,
    assigned_to: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[TimeException]:
    stmt = select(TimeException)
    if status:
        stmt = stmt.where(TimeException.status == TimeExceptionStatus(status))
    if exception_type:
        stmt = stmt.where(TimeException.type == TimeExceptionType(exception_type))
    if employee_id:
        stmt = stmt.where(TimeException.employee_id == employee_id)
    if assigned_to:
        stmt = stmt.where(TimeException.assigned_to == assigned_to)
    if start_date and end_date:
        stmt = stmt.where(
            TimeException.created_at >= utc_day_start(start_date),
            TimeException.created_at <= utc_day_end(end_date),
        )
    return list(db.scalars(stmt.order_by(TimeException.created_at.desc(), TimeException.id.desc())).all())


def mark_time_exception_pending(
    db: Session,
    *,
    time_exception_id: int,
    actor_id: str,
    audit: AuditSink,
) -> TimeException:
    exception = get_time_exception(db, time_exception_id)
    previous = _transition(exception, TimeExceptionStatus.PENDING, actor_id=actor_id)
    db.commit()

    log_time_management_change(
        audit,
        "TIME_EXCEPTION_PENDING",
        {"time_exception_id": exception.id, "previous_status": previous.value},
        actor_id,
    )
    return exception


def approve_time_exception(
    db: Session,
    *,
    time_exception_id: int,
    actor_id: str,
    audit: AuditSink,
    notes: str | None = None,
) -> TimeException:
    exception = get_time_exception(db, time_exception_id)
    previous = _transition(exception, TimeExceptionStatus.APPROVED, actor_id=actor_id)
    if notes:
        exception.reason = f"{exception.reason} | Approved: {notes}" if exception.reason else f"Approved: {notes}"
    db.commit()

    log_time_management_change(
        audit,
        "TIME_EXCEPTION_APPROVED",
        {"time_exception_id": exception.id, "previous_status": previous.value, "notes": notes},
        actor_id,
    )
    return exception


def reject_time_exception(
    db: Session,
    *,
    time_exception_id: int,
    actor_id: str,
    audit: AuditSink,
    notes: str | None = None,
) -> TimeException:
    exception = get_time_exception(db, time_exception_id)
    previous = _transition(exception, TimeExceptionStatus.REJECTED, actor_id=actor_id)

    note = f"[REJECTED - {utc_now().isoformat()}]"
    if notes and notes.strip():
        note = f"{note}\nReason: {notes.strip()}"
    exception.reason = _append_note(exception.reason, note)
    db.commit()

    log_time_management_change(
        audit,
        "TIME_EXCEPTION_REJECTED",
        {
            "time_exception_id": exception.id,
            "previous_status": previous.value,
            "rejection_reason": (notes or "").strip() or "No reason provided",
        },
        actor_id,
    )
    return exception


def escalate_time_exception(
    db: Session,
    *,
    time_exception_id: int,
    actor_id: str,
    audit: AuditSink,
) -> TimeException:
    exception = get_time_exception(db, time_exception_id)
    previous = _transition(exception, TimeExceptionStatus.ESCALATED, actor_id=actor_id)
    db.commit()

    log_time_management_change(
        audit,
        "TIME_EXCEPTION_ESCALATED",
        {"time_exception_id": exception.id, "previous_status": previous.value},
        actor_id,
    )
    return exception


def resolve_time_exception(
    db: Session,
    *,
    time_exception_id: int,
    actor_id: str,
    audit: AuditSink,
    resolution_notes: str | None = None,
) -> TimeException:
    exception = get_time_exception(db, time_exception_id)
    previous = _transition(exception, TimeExceptionStatus.RESOLVED, actor_id=actor_id)
    if resolution_notes:
        exception.reason = resolution_notes
    db.commit()

    log_time_management_change(
        audit,
        "TIME_EXCEPTION_RESOLVED",
        {"time_exception_id": exception.id, "previous_status": previous.value},
        actor_id,
    )
    return exception


def reassign_time_exception(
    db: Session,
    *,
    time_exception_id: int,
    new_assignee_id: str,
    actor_id: str,
    audit: AuditSink,
    reason: str | None = None,
) -> TimeException:
    exception = get_time_exception(db, time_exception_id)
    previous_assignee = exception.assigned_to
    _transition(exception, TimeExceptionStatus.PENDING, actor_id=actor_id)
    exception.assigned_to = new_assignee_id
    if reason:
        exception.reason = reason
    db.commit()

    log_time_management_change(
        audit,
        "EXCEPTION_REASSIGNED",
        {
            "time_exception_id": exception.id,
            "previous_assignee": previous_assignee,
            "new_assignee": new_assignee_id,
            "reason": reason,
        },
        actor_id,
    )
    return exception


def get_time_exception_statistics(
    db: Session,
    *,
    employee_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    exceptions = list_time_exceptions(
        db,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
    )
    by_status = Counter(item.status.value for item in exceptions)
    by_type = Counter(item.type.value for item in exceptions)
    return {
        "total": len(exceptions),
        "pending": by_status[TimeExceptionStatus.OPEN.value] + by_status[TimeExceptionStatus.PENDING.value],
        "escalated": by_status[TimeExceptionStatus.ESCALATED.value],
        "by_status": dict(by_status),
        "by_type": dict(by_type),
    }


def _bulk_transition(
    db: Session,
    *,
    time_exception_ids: Sequence[int],
    target: TimeExceptionStatus,
    actor_id: str,
    reason: str | None = None,
) -> tuple[list[int], list[dict[str, Any]]]:
    done: list[int] = []
    failed: list[dict[str, Any]] = []
    for time_exception_id in time_exception_ids:
        try:
            exception = get_time_exception(db, time_exception_id)
            _transition(exception, target, actor_id=actor_id)
        except EngineError as exc:
            failed.append({"id": time_exception_id, "reason": exc.message})
            continue
        if reason:
            exception.reason = reason
        done.append(time_exception_id)
    db.commit()
    return done, failed


def bulk_approve_time_exceptions(
    db: Session,
    *,
    time_exception_ids: Sequence[int],
    actor_id: str,
    audit: AuditSink,
) -> dict[str, Any]:
    approved, failed = _bulk_transition(
        db,
        time_exception_ids=time_exception_ids,
        target=TimeExceptionStatus.APPROVED,
        actor_id=actor_id,
    )
    log_time_management_change(
        audit,
        "BULK_EXCEPTION_APPROVAL",
        {"approved_count": len(approved), "failed_count": len(failed)},
        actor_id,
    )
    return {"approved": approved, "failed": failed}


def bulk_reject_time_exceptions(
    db: Session,
    *,
    time_exception_ids: Sequence[int],
    reason: str,
    actor_id: str,
    audit: AuditSink,
) -> dict[str, Any]:
    rejected, failed = _bulk_transition(
        db,
        time_exception_ids=time_exception_ids,
        target=TimeExceptionStatus.REJECTED,
        actor_id=actor_id,
        reason=reason,
    )
    log_time_management_change(
        audit,
        "BULK_EXCEPTION_REJECTION",
        {"rejected_count": len(rejected), "failed_count": len(failed)},
        actor_id,
    )
    return {"rejected": rejected, "failed": failed}


def auto_escalate_overdue_exceptions(
    db: Session,
    *,
    threshold_days: int,
    actor_id: str,
    audit: AuditSink,
    exclude_types: Sequence[TimeExceptionType | str] = (),
    now: datetime | None = None,
) -> dict[str, Any]:
    current = normalize_ts(now)
    threshold_date = current - timedelta(days=threshold_days)

    stmt = select(TimeException.id, TimeException.status, TimeException.reason).where(
        TimeException.status.in_(OPEN_TIME_EXCEPTION_STATUSES),
        TimeException.created_at <= threshold_date,
    )
    excluded = [TimeExceptionType(item) for item in exclude_types]
    if excluded:
        stmt = stmt.where(TimeException.type.not_in(excluded))
    overdue = db.execute(stmt.order_by(TimeException.id.asc())).all()

    note = f"[AUTO-ESCALATED - {current.isoformat()}]\nReason: Pending for more than {threshold_days} days"
    escalated_ids: list[int] = []
    for row in overdue:
        result = db.execute(
            update(TimeException)
            .where(TimeException.id == row.id, TimeException.status == row.status)
            .values(
                status=TimeExceptionStatus.ESCALATED,
                reason=_append_note(row.reason, note),
                updated_by=actor_id,
                updated_at=current,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            escalated_ids.append(row.id)
    db.commit()
    db.expire_all()

    log_time_management_change(
        audit,
        "AUTO_ESCALATION_BATCH",
        {
            "threshold_days": threshold_days,
            "total_overdue": len(overdue),
            "escalated_count": len(escalated_ids),
        },
        actor_id,
    )
    logger.info(
        "overdue_exceptions_escalated",
        extra={"threshold_days": threshold_days, "escalated_count": len(escalated_ids)},
    )
    return {
        "threshold_days": threshold_days,
        "threshold_date": threshold_date,
        "summary": {
            "total_overdue": len(overdue),
            "escalated": len(escalated_ids),
            "skipped": len(overdue) - len(escalated_ids),
        },
        "escalated_ids": escalated_ids,
        "executed_at": current,
    }


def count_time_exceptions(
    db: Session,
    *,
    employee_id: str,
    exception_type: TimeExceptionType,
) -> int:
    return int(
        db.scalar(
            select(func.count(TimeException.id)).where(
                TimeException.employee_id == employee_id,
                TimeException.type == exception_type,
            )
        )
        or 0
    )
