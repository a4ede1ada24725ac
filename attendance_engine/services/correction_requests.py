from __future__ import annotations

from collections import Counter
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.audit import AuditSink, log_time_management_change
from attendance_engine.errors import InvalidTransitionError, NotFoundError
from attendance_engine.models import AttendanceCorrectionRequest, AttendanceRecord, CorrectionRequestStatus
from attendance_engine.services.workflow import (
    CORRECTION_REQUEST_TRANSITIONS,
    OPEN_CORRECTION_STATUSES,
    ensure_transition,
)
from attendance_engine.timeutils import utc_day_end, utc_day_start, utc_now

CANCELLABLE_STATUSES = (CorrectionRequestStatus.SUBMITTED, CorrectionRequestStatus.IN_REVIEW)


def _transition(
    request: AttendanceCorrectionRequest,
    target: CorrectionRequestStatus,
    *,
    actor_id: str,
) -> CorrectionRequestStatus:
    previous = request.status
    ensure_transition(CORRECTION_REQUEST_TRANSITIONS, previous, target, entity="Correction request")
    request.status = target
    request.updated_by = actor_id
    return previous


def _refinalise_if_settled(db: Session, attendance_record_id: int) -> bool:
    still_open = db.scalar(
        select(AttendanceCorrectionRequest.id)
        .where(
            AttendanceCorrectionRequest.attendance_record_id == attendance_record_id,
            AttendanceCorrectionRequest.status.in_(OPEN_CORRECTION_STATUSES),
        )
        .limit(1)
    )
    if still_open is not None:
        return False
    record = db.get(AttendanceRecord, attendance_record_id)
    if record is None:
        return False
    record.finalised_for_payroll = True
    return True


def get_correction_request(db: Session, correction_request_id: int) -> AttendanceCorrectionRequest:
    request = db.get(AttendanceCorrectionRequest, correction_request_id)
    if request is None:
        raise NotFoundError("Correction request not found")
    return request


def submit_correction_request(
    db: Session,
    *,
    employee_id: str,
    attendance_record_id: int,
    reason: str | None,
    actor_id: str,
    audit: AuditSink,
) -> AttendanceCorrectionRequest:
    record = db.get(AttendanceRecord, attendance_record_id)
    if record is None:
        raise NotFoundError("Attendance record not found")

    request = AttendanceCorrectionRequest(
        employee_id=employee_id,
        attendance_record_id=attendance_record_id,
        reason=reason,
        status=CorrectionRequestStatus.SUBMITTED,
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(request)
    # Pending corrections keep the record out of payroll.
    record.finalised_for_payroll = False
    db.commit()

    log_time_management_change(
        audit,
        "CORRECTION_REQUEST_SUBMITTED",
        {
            "correction_request_id": request.id,
            "employee_id": employee_id,
            "attendance_record_id": attendance_record_id,
        },
        actor_id,
    )
    return request


def _decide(
    db: Session,
    *,
    correction_request_id: int,
    target: CorrectionRequestStatus,
    actor_id: str,
    audit: AuditSink,
    reason: str | None,
    entity: str,
) -> AttendanceCorrectionRequest:
    request = get_correction_request(db, correction_request_id)
    previous = _transition(request, target, actor_id=actor_id)
    if reason:
        request.reason = reason
    db.flush()
    refinalised = _refinalise_if_settled(db, request.attendance_record_id)
    db.commit()

    log_time_management_change(
        audit,
        entity,
        {
            "correction_request_id": request.id,
            "attendance_record_id": request.attendance_record_id,
            "previous_status": previous.value,
            "record_refinalised": refinalised,
        },
        actor_id,
    )
    return request


def approve_correction_request(
    db: Session,
    *,
    correction_request_id: int,
    actor_id: str,
    audit: AuditSink,
    reason: str | None = None,
) -> AttendanceCorrectionRequest:
    return _decide(
        db,
        correction_request_id=correction_request_id,
        target=CorrectionRequestStatus.APPROVED,
        actor_id=actor_id,
        audit=audit,
        reason=reason,
        entity="CORRECTION_REQUEST_APPROVED",
    )


def reject_correction_request(
    db: Session,
    *,
    correction_request_id: int,
    actor_id: str,
    audit: AuditSink,
    reason: str | None = None,
) -> AttendanceCorrectionRequest:
    return _decide(
        db,
        correction_request_id=correction_request_id,
        target=CorrectionRequestStatus.REJECTED,
        actor_id=actor_id,
        audit=audit,
        reason=reason,
        entity="CORRECTION_REQUEST_REJECTED",
    )


def list_correction_requests(
    db: Session,
    *,
    status: CorrectionRequestStatus | str | None = None,
    employee_id: str | None = None,
) -> list[AttendanceCorrectionRequest]:
    stmt = select(AttendanceCorrectionRequest)
    if status:
        stmt = stmt.where(AttendanceCorrectionRequest.status == CorrectionRequestStatus(status))
    if employee_id:
        stmt = stmt.where(AttendanceCorrectionRequest.employee_id == employee_id)
    stmt = stmt.order_by(AttendanceCorrectionRequest.created_at.desc(), AttendanceCorrectionRequest.id.desc())
    return list(db.scalars(stmt).all())


def mark_correction_request_in_review(
    db: Session,
    *,
    correction_request_id: int,
    actor_id: str,
    audit: AuditSink,
) -> AttendanceCorrectionRequest:
    request = get_correction_request(db, correction_request_id)
    _transition(request, CorrectionRequestStatus.IN_REVIEW, actor_id=actor_id)
    db.commit()

    log_time_management_change(
        audit,
        "CORRECTION_REQUEST_IN_REVIEW",
        {"correction_request_id": request.id, "reviewed_by": actor_id},
        actor_id,
    )
    return request


def escalate_correction_request(
    db: Session,
    *,
    correction_request_id: int,
    escalate_to: str,
    actor_id: str,
    audit: AuditSink,
    reason: str | None = None,
) -> AttendanceCorrectionRequest:
    request = get_correction_request(db, correction_request_id)
    _transition(request, CorrectionRequestStatus.ESCALATED, actor_id=actor_id)
    if reason:
        request.reason = (
            f"{request.reason or ''}\n\n[ESCALATED - {utc_now().isoformat()}]\n"
            f"Escalated to: {escalate_to}\nReason: {reason}"
        )
    db.commit()

    log_time_management_change(
        audit,
        "CORRECTION_REQUEST_ESCALATED",
        {
            "correction_request_id": request.id,
            "employee_id": request.employee_id,
            "escalate_to": escalate_to,
            "reason": reason,
        },
        actor_id,
    )
    return request


def cancel_correction_request(
    db: Session,
    *,
    correction_request_id: int,
    actor_id: str,
    audit: AuditSink,
    reason: str | None = None,
) -> AttendanceCorrectionRequest:
    request = get_correction_request(db, correction_request_id)
    if request.status not in CANCELLABLE_STATUSES:
        raise InvalidTransitionError(f"Cannot cancel request with status: {request.status.value}")

    previous = _transition(request, CorrectionRequestStatus.REJECTED, actor_id=actor_id)
    request.reason = (
        f"{request.reason or ''}\n\n[CANCELLED BY EMPLOYEE - {utc_now().isoformat()}]\n"
        f"Reason: {reason or 'No reason provided'}"
    )
    db.flush()
    _refinalise_if_settled(db, request.attendance_record_id)
    db.commit()

    log_time_management_change(
        audit,
        "CORRECTION_REQUEST_CANCELLED",
        {"correction_request_id": request.id, "previous_status": previous.value},
        actor_id,
    )
    return request


def get_correction_requests_by_employee(
    db: Session,
    *,
    employee_id: str,
    status: CorrectionRequestStatus | str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    stmt = select(AttendanceCorrectionRequest).where(AttendanceCorrectionRequest.employee_id == employee_id)
    if status:
        stmt = stmt.where(AttendanceCorrectionRequest.status == CorrectionRequestStatus(status))
    if start_date is not None:
        stmt = stmt.where(AttendanceCorrectionRequest.created_at >= utc_day_start(start_date))
    if end_date is not None:
        stmt = stmt.where(AttendanceCorrectionRequest.created_at <= utc_day_end(end_date))
    requests = list(
        db.scalars(
            stmt.order_by(AttendanceCorrectionRequest.created_at.desc(), AttendanceCorrectionRequest.id.desc())
        ).all()
    )

    counts = Counter(item.status for item in requests)
    return {
        "employee_id": employee_id,
        "summary": {
            "total": len(requests),
            "submitted": counts[CorrectionRequestStatus.SUBMITTED],
            "in_review": counts[CorrectionRequestStatus.IN_REVIEW],
            "approved": counts[CorrectionRequestStatus.APPROVED],
            "rejected": counts[CorrectionRequestStatus.REJECTED],
        },
        "requests": requests,
    }


def get_correction_request_statistics(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    stmt = select(AttendanceCorrectionRequest.status)
    if start_date is not None:
        stmt = stmt.where(AttendanceCorrectionRequest.created_at >= utc_day_start(start_date))
    if end_date is not None:
        stmt = stmt.where(AttendanceCorrectionRequest.created_at <= utc_day_end(end_date))
    counts = Counter(db.scalars(stmt).all())

    by_status = {status.value: counts[status] for status in CorrectionRequestStatus}
    approved = counts[CorrectionRequestStatus.APPROVED]
    decided = approved + counts[CorrectionRequestStatus.REJECTED]
    pending = sum(counts[status] for status in OPEN_CORRECTION_STATUSES)
    return {
        "start_date": start_date,
        "end_date": end_date,
        "summary": {
            "total_requests": sum(counts.values()),
            "pending_requests": pending,
            "decided_requests": decided,
            "approval_rate": round(approved / decided * 100) if decided else 0,
        },
        "by_status": by_status,
        "generated_at": utc_now(),
    }
