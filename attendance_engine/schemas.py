from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from attendance_engine.models import (
    CorrectionRequestStatus,
    PunchType,
    TimeExceptionStatus,
    TimeExceptionType,
)


class PunchInput(BaseModel):
    type: PunchType
    time: datetime

    @field_validator("time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class PunchRead(BaseModel):
    type: PunchType
    time: datetime

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: str
    punches: list[PunchRead] = Field(default_factory=list)
    total_work_minutes: int
    has_missed_punch: bool
    finalised_for_payroll: bool
    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TimeExceptionRead(BaseModel):
    id: int
    employee_id: str
    attendance_record_id: int | None
    type: TimeExceptionType
    status: TimeExceptionStatus
    reason: str | None = None
    assigned_to: str | None = None
    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CorrectionRequestRead(BaseModel):
    id: int
    employee_id: str
    attendance_record_id: int
    reason: str | None = None
    status: CorrectionRequestStatus
    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReportRecord(TimeExceptionRead):
    attendance_record: AttendanceRecordRead | None = None
