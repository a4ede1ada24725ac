from __future__ import annotations

import json
import logging
import unittest
from datetime import date

from sqlalchemy import select

from attendance_engine.audit import AuditEntry, SqlAuditSink, log_attendance_change
from attendance_engine.errors import NoActiveClockInError, NotFoundError, error_payload
from attendance_engine.locks import get_lock_registry
from attendance_engine.logging_utils import JsonFormatter
from attendance_engine.models import AuditLog, TimeExceptionStatus
from attendance_engine.runtime import EngineRuntime
from engine_fixtures import EngineTestMixin, utc


class SqlAuditSinkTests(EngineTestMixin, unittest.TestCase):
    def test_entry_is_persisted_with_json_safe_change_set(self) -> None:
        sink = SqlAuditSink(self.session_factory)

        sink.append(
            AuditEntry(
                entity="TIME_EXCEPTION_APPROVED",
                change_set={"status": TimeExceptionStatus.APPROVED, "day": date(2026, 3, 2), "ids": (1, 2)},
                actor_id="manager",
                timestamp=utc(2026, 3, 2, 10),
            )
        )

        row = self.db.scalars(select(AuditLog)).one()
        self.assertEqual(row.entity, "TIME_EXCEPTION_APPROVED")
        self.assertEqual(row.actor_id, "manager")
        self.assertEqual(row.change_set, {"status": "APPROVED", "day": "2026-03-02", "ids": [1, 2]})

    def test_write_failure_is_logged_not_raised(self) -> None:
        sink = SqlAuditSink(self.session_factory)
        AuditLog.__table__.drop(self.engine)

        with self.assertLogs("attendance_engine.audit", level="ERROR") as captured:
            sink.append(AuditEntry(entity="ATTENDANCE", change_set={}, actor_id="system"))

        self.assertIn("audit_log_write_failed", captured.output[0])
        AuditLog.__table__.create(self.engine)

    def test_attendance_change_carries_action(self) -> None:
        log_attendance_change(
            self.audit,
            employee_id="emp-1",
            action="CLOCK_IN",
            payload={"attendance_record_id": 4},
            actor_id="kiosk",
        )

        self.assertEqual(self.attendance_actions(), ["CLOCK_IN"])
        self.assertEqual(self.audit.entries[0].change_set["attendance_record_id"], 4)


class RuntimeTests(EngineTestMixin, unittest.TestCase):
    def test_session_requires_start(self) -> None:
        runtime = EngineRuntime(engine=self.engine, configure_logging=False)

        with self.assertRaises(RuntimeError):
            with runtime.session():
                pass
        with self.assertRaises(RuntimeError):
            runtime.audit

    def test_default_locks_are_the_process_registry(self) -> None:
        runtime = EngineRuntime(engine=self.engine, configure_logging=False)

        self.assertIs(runtime.locks, get_lock_registry())
        self.assertIs(EngineRuntime(engine=self.engine, locks=self.locks, configure_logging=False).locks, self.locks)

    def test_default_audit_sink_writes_to_database(self) -> None:
        with EngineRuntime(engine=self.engine, configure_logging=False) as runtime:
            self.assertIsInstance(runtime.audit, SqlAuditSink)
            runtime.audit.append(AuditEntry(entity="SHIFT_EXPIRY_SCAN", change_set={"count": 0}))

        self.assertEqual(self.db.scalars(select(AuditLog.entity)).all(), ["SHIFT_EXPIRY_SCAN"])
        # An injected engine is left open for its owner.
        with self.engine.connect():
            pass


class ErrorAndLoggingTests(unittest.TestCase):
    def test_error_payload_shape(self) -> None:
        payload = error_payload(NoActiveClockInError("No active clock-in"), request_id="req-1")

        self.assertEqual(
            payload,
            {"error": {"code": "NO_ACTIVE_CLOCK_IN", "message": "No active clock-in", "request_id": "req-1"}},
        )
        self.assertEqual(error_payload(NotFoundError("gone"))["error"]["request_id"], "unknown")

    def test_json_formatter_includes_extra_fields(self) -> None:
        record = logging.LogRecord("attendance_engine.test", logging.INFO, __file__, 1, "clock_in", None, None)
        record.employee_id = "emp-1"
        record.status = TimeExceptionStatus.APPROVED
        record.day = date(2026, 3, 2)

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "clock_in")
        self.assertEqual(payload["logger"], "attendance_engine.test")
        self.assertEqual(payload["employee_id"], "emp-1")
        self.assertEqual(payload["status"], "APPROVED")
        self.assertEqual(payload["day"], "2026-03-02")


if __name__ == "__main__":
    unittest.main()
