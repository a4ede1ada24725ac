from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from attendance_engine.audit import AuditSink, log_time_management_change
from attendance_engine.models import (
    AttendanceCorrectionRequest,
    CorrectionRequestStatus,
    TimeException,
    TimeExceptionStatus,
)
from attendance_engine.timeutils import normalize_ts, utc_day_start

logger = logging.getLogger("attendance_engine.escalation")

ESCALATABLE_CORRECTION_STATUSES = (CorrectionRequestStatus.SUBMITTED, CorrectionRequestStatus.IN_REVIEW)
ESCALATABLE_EXCEPTION_STATUSES = (TimeExceptionStatus.PENDING, TimeExceptionStatus.OPEN)


def _escalate_rows(db: Session, model: Any, *, statuses: tuple, target: Any, actor_id: str, now: datetime) -> list[int]:
    candidate_ids = db.scalars(select(model.id).where(model.status.in_(statuses)).order_by(model.id.asc())).all()
    escalated: list[int] = []
    for row_id in candidate_ids:
        # Rows already moved by a concurrent sweep or reviewer match nothing.
        result = db.execute(
            update(model)
            .where(model.id == row_id, model.status.in_(statuses))
            .values(status=target, updated_by=actor_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            escalated.append(row_id)
    return escalated


def escalate_unresolved_requests_before_payroll_cutoff(
    db: Session,
    *,
    cutoff: datetime | date,
    actor_id: str,
    audit: AuditSink,
    now: datetime | None = None,
) -> dict[str, Any]:
    current = normalize_ts(now)
    cutoff_ts = normalize_ts(cutoff) if isinstance(cutoff, datetime) else utc_day_start(cutoff)
    if current < cutoff_ts:
        return {"count": 0, "escalated": []}

    correction_ids = _escalate_rows(
        db,
        AttendanceCorrectionRequest,
        statuses=ESCALATABLE_CORRECTION_STATUSES,
        target=CorrectionRequestStatus.ESCALATED,
        actor_id=actor_id,
        now=current,
    )
    exception_ids = _escalate_rows(
        db,
        TimeException,
        statuses=ESCALATABLE_EXCEPTION_STATUSES,
        target=TimeExceptionStatus.ESCALATED,
        actor_id=actor_id,
        now=current,
    )
    db.commit()
    db.expire_all()

    escalated = [{"type": "CORRECTION_REQUEST", "id": row_id} for row_id in correction_ids]
    escalated.extend({"type": "TIME_EXCEPTION", "id": row_id} for row_id in exception_ids)

    log_time_management_change(
        audit,
        "PAYROLL_CUTOFF_ESCALATION",
        {
            "cutoff": cutoff_ts.isoformat(),
            "correction_requests": len(correction_ids),
            "time_exceptions": len(exception_ids),
            "count": len(escalated),
        },
        actor_id,
    )
    logger.info("payroll_cutoff_escalation", extra={"count": len(escalated), "cutoff": cutoff_ts.isoformat()})
    return {"count": len(escalated), "escalated": escalated}
