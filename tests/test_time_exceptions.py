from __future__ import annotations

import unittest
from datetime import timedelta

from sqlalchemy import update

from attendance_engine.errors import InvalidTransitionError, NotFoundError
from attendance_engine.models import TimeException, TimeExceptionStatus, TimeExceptionType
from attendance_engine.services.time_exceptions import (
    approve_time_exception,
    auto_escalate_overdue_exceptions,
    bulk_approve_time_exceptions,
    bulk_reject_time_exceptions,
    create_time_exception,
    escalate_time_exception,
    get_time_exception_statistics,
    list_time_exceptions,
    list_time_exceptions_by_employee,
    mark_time_exception_pending,
    reassign_time_exception,
    reject_time_exception,
    resolve_time_exception,
)
from attendance_engine.timeutils import utc_now
from engine_fixtures import EngineTestMixin


class TimeExceptionLifecycleTests(EngineTestMixin, unittest.TestCase):
    def _create(self, exception_type: TimeExceptionType = TimeExceptionType.LATE, employee_id: str = "emp-1") -> TimeException:
        return create_time_exception(
            self.db,
            exception_type=exception_type,
            employee_id=employee_id,
            attendance_record_id=None,
            reason="Came in late",
            actor_id="hr",
            audit=self.audit,
        )

    def test_create_starts_open(self) -> None:
        exception = self._create()

        self.assertEqual(exception.status, TimeExceptionStatus.OPEN)
        self.assertEqual(exception.created_by, "hr")
        self.assertEqual(self.entities(), ["TIME_EXCEPTION_CREATED"])

    def test_approve_appends_notes_and_records_actor(self) -> None:
        exception = self._create()

        approved = approve_time_exception(
            self.db,
            time_exception_id=exception.id,
            actor_id="manager",
            audit=self.audit,
            notes="Traffic accident",
        )

        self.assertEqual(approved.status, TimeExceptionStatus.APPROVED)
        self.assertEqual(approved.updated_by, "manager")
        self.assertEqual(approved.reason, "Came in late | Approved: Traffic accident")

    def test_reject_appends_rejection_block(self) -> None:
        exception = self._create()
        mark_time_exception_pending(self.db, time_exception_id=exception.id, actor_id="manager", audit=self.audit)

        rejected = reject_time_exception(
            self.db,
            time_exception_id=exception.id,
            actor_id="manager",
            audit=self.audit,
            notes="No evidence",
        )

        self.assertEqual(rejected.status, TimeExceptionStatus.REJECTED)
        self.assertIn("[REJECTED - ", rejected.reason)
        self.assertTrue(rejected.reason.endswith("Reason: No evidence"))
        self.assertEqual(self.audit.entries[-1].change_set["rejection_reason"], "No evidence")

    def test_escalated_exception_is_still_reviewable(self) -> None:
        exception = self._create()
        escalate_time_exception(self.db, time_exception_id=exception.id, actor_id="system", audit=self.audit)

        approved = approve_time_exception(self.db, time_exception_id=exception.id, actor_id="director", audit=self.audit)

        self.assertEqual(approved.status, TimeExceptionStatus.APPROVED)

    def test_decided_exception_can_still_be_escalated(self) -> None:
        approved = self._create()
        approve_time_exception(self.db, time_exception_id=approved.id, actor_id="manager", audit=self.audit)
        rejected = self._create()
        reject_time_exception(self.db, time_exception_id=rejected.id, actor_id="manager", audit=self.audit)

        for exception in (approved, rejected):
            with self.subTest(exception_id=exception.id):
                escalated = escalate_time_exception(
                    self.db,
                    time_exception_id=exception.id,
                    actor_id="director",
                    audit=self.audit,
                )
                self.assertEqual(escalated.status, TimeExceptionStatus.ESCALATED)
                self.assertEqual(escalated.updated_by, "director")

        self.assertEqual(self.audit.entries[-1].entity, "TIME_EXCEPTION_ESCALATED")

    def test_decided_exception_cannot_be_decided_again(self) -> None:
        exception = self._create()
        approve_time_exception(self.db, time_exception_id=exception.id, actor_id="manager", audit=self.audit)

        with self.assertRaises(InvalidTransitionError) as exc:
            reject_time_exception(self.db, time_exception_id=exception.id, actor_id="manager", audit=self.audit)
        self.assertEqual(exc.exception.code, "INVALID_STATUS_TRANSITION")

    def test_resolved_is_terminal(self) -> None:
        exception = self._create()
        approve_time_exception(self.db, time_exception_id=exception.id, actor_id="manager", audit=self.audit)
        resolve_time_exception(self.db, time_exception_id=exception.id, actor_id="payroll", audit=self.audit)

        for operation in (approve_time_exception, reject_time_exception, escalate_time_exception):
            with self.subTest(operation=operation.__name__):
                with self.assertRaises(InvalidTransitionError):
                    operation(self.db, time_exception_id=exception.id, actor_id="x", audit=self.audit)

    def test_open_exception_cannot_be_resolved_directly(self) -> None:
        exception = self._create()

        with self.assertRaises(InvalidTransitionError):
            resolve_time_exception(self.db, time_exception_id=exception.id, actor_id="payroll", audit=self.audit)

    def test_unknown_id_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            approve_time_exception(self.db, time_exception_id=404, actor_id="manager", audit=self.audit)
        self.assertEqual(self.audit.entries, ())

    def test_reassign_moves_back_to_pending(self) -> None:
        exception = self._create()
        escalate_time_exception(self.db, time_exception_id=exception.id, actor_id="system", audit=self.audit)

        reassigned = reassign_time_exception(
            self.db,
            time_exception_id=exception.id,
            new_assignee_id="manager-2",
            actor_id="hr",
            audit=self.audit,
        )

        self.assertEqual(reassigned.status, TimeExceptionStatus.PENDING)
        self.assertEqual(reassigned.assigned_to, "manager-2")
        self.assertEqual(self.audit.entries[-1].entity, "EXCEPTION_REASSIGNED")

    def test_listing_and_statistics(self) -> None:
        late = self._create(TimeExceptionType.LATE)
        self._create(TimeExceptionType.MISSED_PUNCH)
        self._create(TimeExceptionType.LATE, employee_id="emp-2")
        escalate_time_exception(self.db, time_exception_id=late.id, actor_id="system", audit=self.audit)

        self.assertEqual(len(list_time_exceptions_by_employee(self.db, employee_id="emp-1")), 2)
        self.assertEqual(
            [item.id for item in list_time_exceptions_by_employee(self.db, employee_id="emp-1", status="ESCALATED")],
            [late.id],
        )
        self.assertEqual(len(list_time_exceptions(self.db, exception_type=TimeExceptionType.LATE)), 2)

        stats = get_time_exception_statistics(self.db)
        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["pending"], 2)
        self.assertEqual(stats["escalated"], 1)
        self.assertEqual(stats["by_type"], {"LATE": 2, "MISSED_PUNCH": 1})

    def test_bulk_operations_collect_failures(self) -> None:
        first = self._create()
        second = self._create()
        approve_time_exception(self.db, time_exception_id=second.id, actor_id="manager", audit=self.audit)

        result = bulk_approve_time_exceptions(
            self.db,
            time_exception_ids=[first.id, second.id, 999],
            actor_id="manager",
            audit=self.audit,
        )

        self.assertEqual(result["approved"], [first.id])
        self.assertEqual([item["id"] for item in result["failed"]], [second.id, 999])
        self.assertEqual(self.audit.entries[-1].change_set, {"approved_count": 1, "failed_count": 2})

        third = self._create()
        rejected = bulk_reject_time_exceptions(
            self.db,
            time_exception_ids=[third.id],
            reason="Duplicate",
            actor_id="manager",
            audit=self.audit,
        )
        self.assertEqual(rejected["rejected"], [third.id])
        self.db.refresh(third)
        self.assertEqual(third.reason, "Duplicate")


class AutoEscalationTests(EngineTestMixin, unittest.TestCase):
    def _create_aged(self, exception_type: TimeExceptionType, age_days: int) -> TimeException:
        exception = create_time_exception(
            self.db,
            exception_type=exception_type,
            employee_id="emp-1",
            attendance_record_id=None,
            reason="Pending review",
            actor_id="hr",
            audit=self.audit,
        )
        self.db.execute(
            update(TimeException)
            .where(TimeException.id == exception.id)
            .values(created_at=utc_now() - timedelta(days=age_days))
        )
        self.db.commit()
        return exception

    def test_only_overdue_exceptions_are_escalated(self) -> None:
        overdue = self._create_aged(TimeExceptionType.LATE, 5)
        fresh = self._create_aged(TimeExceptionType.LATE, 1)
        excluded = self._create_aged(TimeExceptionType.OVERTIME_REQUEST, 10)

        result = auto_escalate_overdue_exceptions(
            self.db,
            threshold_days=3,
            exclude_types=[TimeExceptionType.OVERTIME_REQUEST],
            actor_id="system",
            audit=self.audit,
        )

        self.assertEqual(result["escalated_ids"], [overdue.id])
        self.assertEqual(result["summary"]["escalated"], 1)
        statuses = {item.id: item.status for item in list_time_exceptions(self.db)}
        self.assertEqual(statuses[overdue.id], TimeExceptionStatus.ESCALATED)
        self.assertEqual(statuses[fresh.id], TimeExceptionStatus.OPEN)
        self.assertEqual(statuses[excluded.id], TimeExceptionStatus.OPEN)
        self.assertEqual(self.audit.entries[-1].entity, "AUTO_ESCALATION_BATCH")

        again = auto_escalate_overdue_exceptions(self.db, threshold_days=3, actor_id="system", audit=self.audit)
        self.assertEqual(again["escalated_ids"], [excluded.id])


if __name__ == "__main__":
    unittest.main()
