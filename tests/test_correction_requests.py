from __future__ import annotations

import unittest

from attendance_engine.errors import InvalidTransitionError, NotFoundError
from attendance_engine.models import AttendanceRecord, CorrectionRequestStatus
from attendance_engine.services.correction_requests import (
    approve_correction_request,
    cancel_correction_request,
    escalate_correction_request,
    get_correction_request_statistics,
    get_correction_requests_by_employee,
    list_correction_requests,
    mark_correction_request_in_review,
    reject_correction_request,
    submit_correction_request,
)
from attendance_engine.services.punch_ledger import record_punch_with_metadata
from engine_fixtures import EngineTestMixin, utc


class CorrectionRequestTests(EngineTestMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.record = record_punch_with_metadata(
            self.db,
            employee_id="emp-1",
            punches=[
                {"type": "IN", "time": utc(2026, 3, 2, 9)},
                {"type": "OUT", "time": utc(2026, 3, 2, 17)},
            ],
            actor_id="hr",
            audit=self.audit,
        )
        self.record.finalised_for_payroll = True
        self.db.commit()

    def _submit(self, reason: str = "Wrong clock-out time"):
        return submit_correction_request(
            self.db,
            employee_id="emp-1",
            attendance_record_id=self.record.id,
            reason=reason,
            actor_id="emp-1",
            audit=self.audit,
        )

    def test_submit_unfinalises_record(self) -> None:
        request = self._submit()

        self.assertEqual(request.status, CorrectionRequestStatus.SUBMITTED)
        self.assertFalse(self.db.get(AttendanceRecord, self.record.id).finalised_for_payroll)
        self.assertEqual(self.audit.entries[-1].entity, "CORRECTION_REQUEST_SUBMITTED")

    def test_submit_for_missing_record_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            submit_correction_request(
                self.db,
                employee_id="emp-1",
                attendance_record_id=999,
                reason=None,
                actor_id="emp-1",
                audit=self.audit,
            )

    def test_record_is_refinalised_once_last_request_is_decided(self) -> None:
        first = self._submit()
        second = self._submit("Also missing break")

        approve_correction_request(self.db, correction_request_id=first.id, actor_id="manager", audit=self.audit)
        self.assertFalse(self.db.get(AttendanceRecord, self.record.id).finalised_for_payroll)

        reject_correction_request(
            self.db,
            correction_request_id=second.id,
            actor_id="manager",
            audit=self.audit,
            reason="Break was recorded",
        )
        self.assertTrue(self.db.get(AttendanceRecord, self.record.id).finalised_for_payroll)
        self.assertEqual(second.reason, "Break was recorded")
        self.assertTrue(self.audit.entries[-1].change_set["record_refinalised"])

    def test_escalated_request_can_still_be_approved(self) -> None:
        request = self._submit()
        escalate_correction_request(
            self.db,
            correction_request_id=request.id,
            escalate_to="HR_MANAGER",
            actor_id="manager",
            audit=self.audit,
            reason="Needs HR sign-off",
        )
        self.assertIn("Escalated to: HR_MANAGER", request.reason)

        approved = approve_correction_request(self.db, correction_request_id=request.id, actor_id="hr", audit=self.audit)

        self.assertEqual(approved.status, CorrectionRequestStatus.APPROVED)

    def test_in_review_only_from_submitted(self) -> None:
        request = self._submit()
        mark_correction_request_in_review(self.db, correction_request_id=request.id, actor_id="manager", audit=self.audit)

        with self.assertRaises(InvalidTransitionError):
            mark_correction_request_in_review(self.db, correction_request_id=request.id, actor_id="manager", audit=self.audit)

    def test_decided_request_is_final(self) -> None:
        request = self._submit()
        approve_correction_request(self.db, correction_request_id=request.id, actor_id="manager", audit=self.audit)

        with self.assertRaises(InvalidTransitionError):
            reject_correction_request(self.db, correction_request_id=request.id, actor_id="manager", audit=self.audit)

    def test_cancel_only_while_pending(self) -> None:
        request = self._submit()
        cancelled = cancel_correction_request(
            self.db,
            correction_request_id=request.id,
            actor_id="emp-1",
            audit=self.audit,
            reason="Filed by mistake",
        )
        self.assertEqual(cancelled.status, CorrectionRequestStatus.REJECTED)
        self.assertIn("[CANCELLED BY EMPLOYEE - ", cancelled.reason)
        self.assertTrue(self.db.get(AttendanceRecord, self.record.id).finalised_for_payroll)

        escalated = self._submit()
        escalate_correction_request(
            self.db,
            correction_request_id=escalated.id,
            escalate_to="HR_ADMIN",
            actor_id="manager",
            audit=self.audit,
        )
        with self.assertRaises(InvalidTransitionError):
            cancel_correction_request(self.db, correction_request_id=escalated.id, actor_id="emp-1", audit=self.audit)

    def test_listing_summary_and_statistics(self) -> None:
        approved = self._submit()
        rejected = self._submit()
        self._submit()
        approve_correction_request(self.db, correction_request_id=approved.id, actor_id="manager", audit=self.audit)
        reject_correction_request(self.db, correction_request_id=rejected.id, actor_id="manager", audit=self.audit)

        self.assertEqual(len(list_correction_requests(self.db, status="SUBMITTED")), 1)
        self.assertEqual(len(list_correction_requests(self.db, employee_id="emp-1")), 3)

        by_employee = get_correction_requests_by_employee(self.db, employee_id="emp-1")
        self.assertEqual(
            by_employee["summary"],
            {"total": 3, "submitted": 1, "in_review": 0, "approved": 1, "rejected": 1},
        )

        stats = get_correction_request_statistics(self.db)
        self.assertEqual(stats["summary"]["total_requests"], 3)
        self.assertEqual(stats["summary"]["pending_requests"], 1)
        self.assertEqual(stats["summary"]["approval_rate"], 50)


if __name__ == "__main__":
    unittest.main()
