"""Transition tables for the two review workflows.

ESCALATED stays reviewable in both: an escalated item is re-reviewed by a
higher authority and can still be approved or rejected. A decided time
exception can still be escalated; RESOLVED is its only terminal state.
"""

from __future__ import annotations

from enum import Enum

from attendance_engine.errors import InvalidTransitionError
from attendance_engine.models import CorrectionRequestStatus, TimeExceptionStatus

TE = TimeExceptionStatus
CR = CorrectionRequestStatus

TIME_EXCEPTION_TRANSITIONS: dict[TimeExceptionStatus, frozenset[TimeExceptionStatus]] = {
    TE.OPEN: frozenset({TE.PENDING, TE.APPROVED, TE.REJECTED, TE.ESCALATED}),
    TE.PENDING: frozenset({TE.PENDING, TE.APPROVED, TE.REJECTED, TE.ESCALATED}),
    TE.ESCALATED: frozenset({TE.PENDING, TE.APPROVED, TE.REJECTED, TE.ESCALATED, TE.RESOLVED}),
    TE.APPROVED: frozenset({TE.ESCALATED, TE.RESOLVED}),
    TE.REJECTED: frozenset({TE.ESCALATED, TE.RESOLVED}),
    TE.RESOLVED: frozenset(),
}

CORRECTION_REQUEST_TRANSITIONS: dict[CorrectionRequestStatus, frozenset[CorrectionRequestStatus]] = {
    CR.SUBMITTED: frozenset({CR.IN_REVIEW, CR.APPROVED, CR.REJECTED, CR.ESCALATED}),
    CR.IN_REVIEW: frozenset({CR.APPROVED, CR.REJECTED, CR.ESCALATED}),
    CR.ESCALATED: frozenset({CR.APPROVED, CR.REJECTED, CR.ESCALATED}),
    CR.APPROVED: frozenset(),
    CR.REJECTED: frozenset(),
}

OPEN_TIME_EXCEPTION_STATUSES = frozenset({TE.OPEN, TE.PENDING})
OPEN_CORRECTION_STATUSES = frozenset({CR.SUBMITTED, CR.IN_REVIEW, CR.ESCALATED})


def can_transition(transitions: dict, current: Enum, target: Enum) -> bool:
    return target in transitions.get(current, frozenset())


def ensure_transition(transitions: dict, current: Enum, target: Enum, *, entity: str) -> None:
    if not can_transition(transitions, current, target):
        raise InvalidTransitionError(
            f"{entity} cannot move from {current.value} to {target.value}.",
        )
