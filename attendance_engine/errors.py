from __future__ import annotations

from typing import Any


class EngineError(Exception):
    status_code = 500
    code = "ENGINE_ERROR"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(EngineError):
    status_code = 404
    code = "NOT_FOUND"


class NoAttendanceFoundError(NotFoundError):
    code = "NO_ATTENDANCE_FOUND"


class NoActiveClockInError(EngineError):
    status_code = 409
    code = "NO_ACTIVE_CLOCK_IN"


class PolicyViolationError(EngineError):
    status_code = 400
    code = "POLICY_VIOLATION"


class OutsideShiftWindowError(PolicyViolationError):
    code = "OUTSIDE_SHIFT_WINDOW"


class InvalidTransitionError(EngineError):
    status_code = 409
    code = "INVALID_STATUS_TRANSITION"


class InvalidReportTypeError(EngineError):
    status_code = 400
    code = "INVALID_REPORT_TYPE"


class InvalidFormatError(EngineError):
    status_code = 400
    code = "INVALID_FORMAT"


class RecordFinalisedError(EngineError):
    status_code = 409
    code = "RECORD_FINALISED"


class ConcurrentModificationError(EngineError):
    status_code = 409
    code = "CONCURRENT_MODIFICATION"


def error_payload(exc: EngineError, *, request_id: str | None = None) -> dict[str, Any]:
    return {
        "error": {
            "code": exc.code,
            "message": exc.message,
            "request_id": request_id or "unknown",
        }
    }
