from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from attendance_engine.errors import OutsideShiftWindowError, PolicyViolationError
from attendance_engine.models import PunchPolicy, PunchType
from attendance_engine.schemas import PunchInput
from attendance_engine.timeutils import minutes_of_day_utc, parse_hhmm


def coerce_punches(punches: Sequence[PunchInput | dict[str, Any]]) -> list[PunchInput]:
    return [punch if isinstance(punch, PunchInput) else PunchInput.model_validate(punch) for punch in punches]


def _coerce_policy(policy: PunchPolicy | str) -> PunchPolicy | str:
    try:
        return PunchPolicy(policy)
    except ValueError:
        return policy


def ensure_alternating(punch_types: Sequence[PunchType]) -> None:
    for index in range(1, len(punch_types)):
        if punch_types[index] == punch_types[index - 1]:
            raise PolicyViolationError("Punch sequence must alternate between IN and OUT.")


def enforce_punch_policy(
    policy: PunchPolicy | str,
    punches: Sequence[PunchInput | dict[str, Any]],
) -> dict[str, Any]:
    normalized_policy = _coerce_policy(policy)
    normalized = coerce_punches(punches)

    if normalized_policy == PunchPolicy.FIRST_LAST and len(normalized) > 2:
        raise PolicyViolationError("First/Last policy allows only two punches per period.")

    ensure_alternating([punch.type for punch in normalized])
    return {"valid": True, "policy": getattr(normalized_policy, "value", normalized_policy)}


def _shift_minutes(value: str, label: str) -> int:
    try:
        return parse_hhmm(value)
    except ValueError as exc:
        raise PolicyViolationError(f"Invalid {label} time: {value!r}") from exc


def enforce_shift_punch_policy(
    shift_start: str,
    shift_end: str,
    allow_early_minutes: int | None,
    allow_late_minutes: int | None,
    punches: Sequence[PunchInput | dict[str, Any]],
) -> dict[str, Any]:
    start_minutes = _shift_minutes(shift_start, "shift start")
    end_minutes = _shift_minutes(shift_end, "shift end")
    allow_early = allow_early_minutes or 0
    allow_late = allow_late_minutes or 0

    for punch in coerce_punches(punches):
        punch_minutes = minutes_of_day_utc(punch.time)
        if punch_minutes < start_minutes - allow_early:
            raise OutsideShiftWindowError("Punch occurs before the allowed start window.")
        if punch_minutes > end_minutes + allow_late:
            raise OutsideShiftWindowError("Punch occurs after the allowed end window.")

    return {"valid": True}
