from __future__ import annotations

import io
import json
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

from attendance_engine.cli import build_parser, main, run_command
from attendance_engine.errors import NotFoundError
from attendance_engine.models import TimeExceptionType
from attendance_engine.runtime import EngineRuntime
from attendance_engine.services.time_exceptions import create_time_exception
from engine_fixtures import EngineTestMixin, utc


class CliTests(EngineTestMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        for _ in range(3):
            create_time_exception(
                self.db,
                exception_type=TimeExceptionType.LATE,
                employee_id="emp-1",
                attendance_record_id=None,
                reason="late",
                actor_id="system",
                audit=self.audit,
            )
        self.runtime = EngineRuntime(engine=self.engine, audit=self.audit, locks=self.locks, configure_logging=False).start()

    def tearDown(self) -> None:
        self.runtime.close()
        super().tearDown()

    def test_parser_defaults(self) -> None:
        args = build_parser().parse_args(["escalate", "--cutoff", "2026-03-25T00:00:00Z"])

        self.assertEqual(args.actor, "system")
        self.assertEqual(args.cutoff, utc(2026, 3, 25))

    def test_lateness_command_uses_runtime_audit(self) -> None:
        args = build_parser().parse_args(["--actor", "hr", "lateness", "--employee", "emp-1"])

        result = run_command(self.runtime, args)

        self.assertTrue(result["exceeded"])
        self.assertEqual(self.audit.entries[-1].entity, "LATENESS_DISCIPLINARY")
        self.assertEqual(self.audit.entries[-1].actor_id, "hr")

    def test_csv_export_returns_text(self) -> None:
        args = build_parser().parse_args(["export", "--report-type", "lateness", "--format", "csv"])

        result = run_command(self.runtime, args)

        self.assertEqual(result["format"], "csv")
        self.assertTrue(result["data"].startswith("Summary\ntotal_records,3"))

    def test_xlsx_export_reports_size(self) -> None:
        args = build_parser().parse_args(["export", "--report-type", "exception", "--format", "xlsx"])

        result = run_command(self.runtime, args)

        self.assertNotIn("data", result)
        self.assertGreater(result["bytes"], 0)

    def test_missed_punch_scan_without_records(self) -> None:
        result = run_command(self.runtime, build_parser().parse_args(["missed-punches"]))

        self.assertEqual(result, {"count": 0, "records": []})

    def test_main_prints_json_result(self) -> None:
        stdout = io.StringIO()
        with patch("attendance_engine.cli.EngineRuntime", return_value=self.runtime), redirect_stdout(stdout):
            code = main(["lateness", "--employee", "emp-2"])

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout.getvalue())["count"], 0)

    def test_main_reports_engine_errors(self) -> None:
        stderr = io.StringIO()
        with (
            patch("attendance_engine.cli.EngineRuntime", return_value=self.runtime),
            patch("attendance_engine.cli.run_command", side_effect=NotFoundError("Attendance record not found")),
            redirect_stderr(stderr),
        ):
            code = main(["missed-punches"])

        self.assertEqual(code, 1)
        self.assertEqual(json.loads(stderr.getvalue())["error"]["code"], "NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
