from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from attendance_engine.audit import AuditSink, log_attendance_change
from attendance_engine.errors import (
    ConcurrentModificationError,
    NoActiveClockInError,
    NoAttendanceFoundError,
    NotFoundError,
    PolicyViolationError,
    RecordFinalisedError,
)
from attendance_engine.locks import EmployeeLockRegistry, get_lock_registry
from attendance_engine.models import (
    AttendanceCorrectionRequest,
    AttendancePunch,
    AttendanceRecord,
    CorrectionRequestStatus,
    PunchPolicy,
    PunchType,
    RoundingStrategy,
    TimeException,
    TimeExceptionType,
)
from attendance_engine.schemas import PunchInput
from attendance_engine.settings import get_settings
from attendance_engine.services.lateness import detect_clock_in_lateness
from attendance_engine.services.punch_policy import coerce_punches, enforce_punch_policy
from attendance_engine.services.rounding import round_minutes
from attendance_engine.services.time_exceptions import build_time_exception
from attendance_engine.services.workflow import OPEN_CORRECTION_STATUSES
from attendance_engine.timeutils import normalize_ts, utc_day_end, utc_day_start

logger = logging.getLogger("attendance_engine.punch_ledger")


def calculate_work_minutes(punches: Sequence[Any]) -> float:
    total_minutes = 0.0
    for index in range(0, len(punches) - 1, 2):
        in_time = normalize_ts(punches[index].time)
        out_time = normalize_ts(punches[index + 1].time)
        total_minutes += (out_time - in_time).total_seconds() / 60
    return total_minutes


def is_complete_sequence(punch_types: Sequence[PunchType]) -> bool:
    if len(punch_types) % 2 != 0:
        return False
    for index, punch_type in enumerate(punch_types):
        expected = PunchType.IN if index % 2 == 0 else PunchType.OUT
        if punch_type != expected:
            return False
    return True


def _refresh_totals(record: AttendanceRecord) -> None:
    minutes = round_minutes(calculate_work_minutes(record.punches), 1, RoundingStrategy.NEAREST)
    record.total_work_minutes = max(0, int(minutes))
    record.has_missed_punch = not is_complete_sequence([punch.type for punch in record.punches])


def _append_punch(record: AttendanceRecord, punch_type: PunchType, punch_time: datetime) -> None:
    record.punches.append(
        AttendancePunch(
            position=len(record.punches),
            type=punch_type,
            time=normalize_ts(punch_time),
        )
    )


def _commit(db: Session) -> None:
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrentModificationError(
            "Attendance record was modified concurrently. Please retry.",
        ) from exc


def _ensure_mutable(record: AttendanceRecord) -> None:
    if get_settings().lock_finalised_records and record.finalised_for_payroll:
        raise RecordFinalisedError("Attendance record is finalised for payroll.")


def _last_punch_type(record: AttendanceRecord) -> PunchType | None:
    if not record.punches:
        return None
    return record.punches[-1].type


def get_attendance_record(db: Session, attendance_record_id: int) -> AttendanceRecord:
    record = db.get(AttendanceRecord, attendance_record_id)
    if record is None:
        raise NotFoundError("Attendance record not found")
    return record


def list_attendance_records(
    db: Session,
    *,
    employee_id: str,
    days: int = 30,
    now: datetime | None = None,
) -> list[AttendanceRecord]:
    since = utc_day_start(normalize_ts(now) - timedelta(days=days))
    return list(
        db.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.created_at >= since,
            )
            .order_by(AttendanceRecord.created_at.desc(), AttendanceRecord.id.desc())
        ).all()
    )


def clock_in(
    db: Session,
    *,
    employee_id: str,
    actor_id: str,
    audit: AuditSink,
    locks: EmployeeLockRegistry | None = None,
    now: datetime | None = None,
) -> AttendanceRecord:
    punch_time = normalize_ts(now)
    registry = locks or get_lock_registry()

    with registry.hold(employee_id):
        record = AttendanceRecord(
            employee_id=employee_id,
            total_work_minutes=0,
            has_missed_punch=True,
            finalised_for_payroll=False,
            created_by=actor_id,
            updated_by=actor_id,
            created_at=punch_time,
            updated_at=punch_time,
        )
        _append_punch(record, PunchType.IN, punch_time)
        db.add(record)
        _commit(db)

    log_attendance_change(
        audit,
        employee_id=employee_id,
        action="CLOCK_IN",
        payload={
            "attendance_record_id": record.id,
            "source": "ID_CARD",
            "timestamp": punch_time.isoformat(),
        },
        actor_id=actor_id,
    )
    _detect_lateness_quietly(
        db,
        employee_id=employee_id,
        attendance_record_id=record.id,
        punch_time=punch_time,
        actor_id=actor_id,
        audit=audit,
    )
    return record


def clock_out(
    db: Session,
    *,
    employee_id: str,
    actor_id: str,
    audit: AuditSink,
    locks: EmployeeLockRegistry | None = None,
    now: datetime | None = None,
) -> AttendanceRecord:
    punch_time = normalize_ts(now)
    registry = locks or get_lock_registry()

    with registry.hold(employee_id):
        records = list(
            db.scalars(
                select(AttendanceRecord)
                .where(AttendanceRecord.employee_id == employee_id)
                .order_by(AttendanceRecord.created_at.desc(), AttendanceRecord.id.desc())
                .with_for_update()
            ).all()
        )
        if not records:
            raise NoAttendanceFoundError("No attendance record found. Please clock in first.")

        record = next((item for item in records if _last_punch_type(item) == PunchType.IN), None)
        if record is None:
            raise NoActiveClockInError("No active clock-in found. Please clock in first.")

        _append_punch(record, PunchType.OUT, punch_time)
        _refresh_totals(record)
        record.updated_by = actor_id
        record.updated_at = punch_time
        _commit(db)

    log_attendance_change(
        audit,
        employee_id=employee_id,
        action="CLOCK_OUT",
        payload={
            "attendance_record_id": record.id,
            "source": "ID_CARD",
            "total_work_minutes": record.total_work_minutes,
            "timestamp": punch_time.isoformat(),
        },
        actor_id=actor_id,
    )
    return record


def record_punch_with_metadata(
    db: Session,
    *,
    employee_id: str,
    punches: Sequence[PunchInput | dict[str, Any]],
    actor_id: str,
    audit: AuditSink,
    device_id: str | None = None,
    location: str | None = None,
    source: str | None = None,
    policy: PunchPolicy | str | None = None,
) -> AttendanceRecord:
    normalized = coerce_punches(punches)
    if policy is not None:
        enforce_punch_policy(policy, normalized)

    record = AttendanceRecord(
        employee_id=employee_id,
        finalised_for_payroll=False,
        created_by=actor_id,
        updated_by=actor_id,
    )
    for punch in normalized:
        _append_punch(record, punch.type, punch.time)
    _refresh_totals(record)
    # Odd punch counts are always missed punches, even when the pairs alternate.
    record.has_missed_punch = record.has_missed_punch or len(normalized) % 2 != 0

    db.add(record)
    _commit(db)

    log_attendance_change(
        audit,
        employee_id=employee_id,
        action="PUNCH_RECORDED",
        payload={
            "attendance_record_id": record.id,
            "device_id": device_id,
            "location": location,
            "source": source or "manual",
        },
        actor_id=actor_id,
    )

    first_in = next((punch for punch in normalized if punch.type == PunchType.IN), None)
    if first_in is not None:
        _detect_lateness_quietly(
            db,
            employee_id=employee_id,
            attendance_record_id=record.id,
            punch_time=first_in.time,
            actor_id=actor_id,
            audit=audit,
        )
    return record


def record_punch_from_device(
    db: Session,
    *,
    employee_id: str,
    punches: Sequence[PunchInput | dict[str, Any]],
    actor_id: str,
    audit: AuditSink,
    device_id: str | None = None,
    location: str | None = None,
    source: str | None = None,
) -> AttendanceRecord:
    return record_punch_with_metadata(
        db,
        employee_id=employee_id,
        punches=punches,
        actor_id=actor_id,
        audit=audit,
        device_id=device_id,
        location=location,
        source=source or "device",
    )


def apply_attendance_rounding(
    db: Session,
    *,
    attendance_record_id: int,
    interval_minutes: int,
    strategy: RoundingStrategy | str,
    actor_id: str,
    audit: AuditSink,
) -> AttendanceRecord:
    record = get_attendance_record(db, attendance_record_id)
    _ensure_mutable(record)

    previous = record.total_work_minutes
    record.total_work_minutes = int(round_minutes(record.total_work_minutes, interval_minutes, strategy))
    record.updated_by = actor_id
    _commit(db)

    log_attendance_change(
        audit,
        employee_id=record.employee_id,
        action="ATTENDANCE_ROUNDED",
        payload={
            "attendance_record_id": record.id,
            "strategy": getattr(strategy, "value", strategy),
            "interval": interval_minutes,
            "previous_minutes": previous,
            "total_work_minutes": record.total_work_minutes,
        },
        actor_id=actor_id,
    )
    return record


def update_attendance_record(
    db: Session,
    *,
    attendance_record_id: int,
    punches: Sequence[PunchInput | dict[str, Any]],
    actor_id: str,
    audit: AuditSink,
    reason: str | None = None,
) -> AttendanceRecord:
    normalized = coerce_punches(punches)
    if not normalized:
        raise PolicyViolationError("Invalid punches payload: no valid punches could be parsed.")

    record = get_attendance_record(db, attendance_record_id)
    _ensure_mutable(record)

    record.punches.clear()
    db.flush()
    for punch in normalized:
        _append_punch(record, punch.type, punch.time)
    _refresh_totals(record)
    record.updated_by = actor_id

    resolved = db.execute(
        update(AttendanceCorrectionRequest)
        .where(
            AttendanceCorrectionRequest.attendance_record_id == record.id,
            AttendanceCorrectionRequest.status.in_(OPEN_CORRECTION_STATUSES),
        )
        .values(
            status=CorrectionRequestStatus.APPROVED,
            reason=reason or "Resolved via manual attendance update",
            updated_by=actor_id,
        )
        .execution_options(synchronize_session="fetch")
    ).rowcount
    record.finalised_for_payroll = len(record.punches) > 0 and len(record.punches) % 2 == 0
    _commit(db)

    log_attendance_change(
        audit,
        employee_id=record.employee_id,
        action="ATTENDANCE_UPDATED",
        payload={
            "attendance_record_id": record.id,
            "punch_count": len(record.punches),
            "total_work_minutes": record.total_work_minutes,
            "resolved_correction_requests": resolved,
            "finalised_for_payroll": record.finalised_for_payroll,
        },
        actor_id=actor_id,
    )
    return record


def detect_missed_punches(
    db: Session,
    *,
    actor_id: str,
    audit: AuditSink,
    now: datetime | None = None,
) -> dict[str, Any]:
    current = normalize_ts(now)
    records = db.scalars(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.created_at >= utc_day_start(current),
            AttendanceRecord.created_at <= utc_day_end(current),
        )
        .order_by(AttendanceRecord.id.asc())
    ).all()
    already_open = set(
        db.scalars(
            select(TimeException.attendance_record_id).where(
                TimeException.type == TimeExceptionType.MISSED_PUNCH,
                TimeException.attendance_record_id.in_([record.id for record in records]),
            )
        ).all()
    )

    flagged: list[tuple[AttendanceRecord, str]] = []
    for record in records:
        punch_count = len(record.punches)
        if punch_count != 0 and punch_count % 2 == 0:
            continue
        missed_type = "CLOCK_IN" if punch_count == 0 else "CLOCK_OUT"
        record.has_missed_punch = True
        record.updated_by = actor_id
        if record.id not in already_open:
            db.add(
                build_time_exception(
                    exception_type=TimeExceptionType.MISSED_PUNCH,
                    employee_id=record.employee_id,
                    attendance_record_id=record.id,
                    reason=f"Auto-generated: missing {missed_type} punch",
                    actor_id=actor_id,
                )
            )
        flagged.append((record, missed_type))

    if flagged:
        _commit(db)

    for record, missed_type in flagged:
        log_attendance_change(
            audit,
            employee_id=record.employee_id,
            action="MISSED_PUNCH_FLAGGED",
            payload={"attendance_record_id": record.id, "missed_punch_type": missed_type},
            actor_id=actor_id,
        )

    logger.info("missed_punch_scan", extra={"flagged_count": len(flagged)})
    return {"count": len(flagged), "records": [record for record, _ in flagged]}


def _detect_lateness_quietly(
    db: Session,
    *,
    employee_id: str,
    attendance_record_id: int,
    punch_time: datetime,
    actor_id: str,
    audit: AuditSink,
) -> None:
    # The punch is already stored; a failed lateness check must not undo it.
    try:
        detect_clock_in_lateness(
            db,
            employee_id=employee_id,
            attendance_record_id=attendance_record_id,
            punch_time=punch_time,
            actor_id=actor_id,
            audit=audit,
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "lateness_detection_failed",
            extra={"employee_id": employee_id, "attendance_record_id": attendance_record_id},
        )
