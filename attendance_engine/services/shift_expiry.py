from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.audit import AuditSink, log_time_management_change
from attendance_engine.models import Shift, ShiftAssignment, ShiftAssignmentStatus
from attendance_engine.settings import get_settings
from attendance_engine.timeutils import days_between, normalize_ts, utc_day_start

logger = logging.getLogger("attendance_engine.shift_expiry")


def expiry_urgency(days_remaining: int) -> str:
    if days_remaining <= 3:
        return "HIGH"
    if days_remaining <= 5:
        return "MEDIUM"
    return "LOW"


def _expiring_item(assignment: ShiftAssignment, shift: Shift, now: datetime) -> dict[str, Any]:
    days_remaining = math.ceil(days_between(now, utc_day_start(assignment.end_date)))
    return {
        "assignment_id": assignment.id,
        "employee_id": assignment.employee_id,
        "shift_id": shift.id,
        "shift_name": shift.name,
        "shift_times": f"{shift.start_time} - {shift.end_time}",
        "start_date": assignment.start_date,
        "end_date": assignment.end_date,
        "days_remaining": days_remaining,
        "status": assignment.status.value,
        "urgency": expiry_urgency(days_remaining),
    }


def check_expiring_shift_assignments(
    db: Session,
    *,
    actor_id: str,
    audit: AuditSink,
    days_before_expiry: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if days_before_expiry is None:
        days_before_expiry = get_settings().default_days_before_expiry
    current = normalize_ts(now)
    window_start = current.date()
    window_end = (current + timedelta(days=days_before_expiry)).date()

    rows = db.execute(
        select(ShiftAssignment, Shift)
        .join(Shift, Shift.id == ShiftAssignment.shift_id)
        .where(
            ShiftAssignment.status == ShiftAssignmentStatus.APPROVED,
            ShiftAssignment.end_date.is_not(None),
            ShiftAssignment.end_date >= window_start,
            ShiftAssignment.end_date <= window_end,
        )
    ).all()

    expiring = sorted(
        (_expiring_item(assignment, shift, current) for assignment, shift in rows),
        key=lambda item: (item["days_remaining"], item["assignment_id"]),
    )
    summary = {
        "high_urgency": sum(1 for item in expiring if item["urgency"] == "HIGH"),
        "medium_urgency": sum(1 for item in expiring if item["urgency"] == "MEDIUM"),
        "low_urgency": sum(1 for item in expiring if item["urgency"] == "LOW"),
    }

    log_time_management_change(
        audit,
        "SHIFT_EXPIRY_SCAN",
        {
            "count": len(expiring),
            "days_before_expiry": days_before_expiry,
            "urgent_count": summary["high_urgency"],
        },
        actor_id,
    )
    logger.info("shift_expiry_scan", extra={"count": len(expiring), "days_before_expiry": days_before_expiry})
    return {
        "count": len(expiring),
        "days_before_expiry": days_before_expiry,
        "summary": summary,
        "assignments": expiring,
    }


def get_expired_unprocessed_assignments(
    db: Session,
    *,
    actor_id: str,
    audit: AuditSink,
    now: datetime | None = None,
) -> dict[str, Any]:
    current = normalize_ts(now)
    rows = db.execute(
        select(ShiftAssignment, Shift)
        .join(Shift, Shift.id == ShiftAssignment.shift_id)
        .where(
            ShiftAssignment.status == ShiftAssignmentStatus.APPROVED,
            ShiftAssignment.end_date.is_not(None),
            ShiftAssignment.end_date < current.date(),
        )
        .order_by(ShiftAssignment.end_date.asc(), ShiftAssignment.id.asc())
    ).all()

    expired = [
        {
            "assignment_id": assignment.id,
            "employee_id": assignment.employee_id,
            "shift_name": shift.name,
            "end_date": assignment.end_date,
            "days_overdue": math.ceil(days_between(utc_day_start(assignment.end_date), current)),
        }
        for assignment, shift in rows
    ]

    log_time_management_change(audit, "EXPIRED_UNPROCESSED_SCAN", {"count": len(expired)}, actor_id)
    return {"count": len(expired), "assignments": expired}
