from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

from attendance_engine.models import RoundingStrategy

_ROUNDING_MODES = {
    RoundingStrategy.NEAREST: ROUND_HALF_UP,
    RoundingStrategy.CEILING: ROUND_CEILING,
    RoundingStrategy.FLOOR: ROUND_FLOOR,
}


def _coerce_strategy(strategy: RoundingStrategy | str | None) -> RoundingStrategy:
    if isinstance(strategy, RoundingStrategy):
        return strategy
    try:
        return RoundingStrategy(str(strategy or "").strip().upper())
    except ValueError:
        return RoundingStrategy.FLOOR


def round_minutes(
    value: int | float,
    interval_minutes: int | float,
    strategy: RoundingStrategy | str | None = RoundingStrategy.FLOOR,
) -> int | float:
    """Snap ``value`` onto a multiple of ``interval_minutes``.

    NEAREST rounds halves away from zero, unknown strategies fall back to
    FLOOR and a non-positive interval leaves the value untouched.
    """
    if interval_minutes <= 0:
        return value

    mode = _ROUNDING_MODES[_coerce_strategy(strategy)]
    interval = Decimal(str(interval_minutes))
    steps = (Decimal(str(value)) / interval).quantize(Decimal(1), rounding=mode)
    rounded = steps * interval

    if isinstance(value, int) and isinstance(interval_minutes, int):
        return int(rounded)
    return float(rounded)
