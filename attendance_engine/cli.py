from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any

from attendance_engine.errors import EngineError, error_payload
from attendance_engine.runtime import EngineRuntime
from attendance_engine.schemas import AttendanceRecordRead
from attendance_engine.services.escalation import escalate_unresolved_requests_before_payroll_cutoff
from attendance_engine.services.lateness import monitor_repeated_lateness
from attendance_engine.services.punch_ledger import detect_missed_punches
from attendance_engine.services.reports import EXPORT_FORMATS, REPORT_TYPES, export_report
from attendance_engine.services.shift_expiry import check_expiring_shift_assignments

SYSTEM_ACTOR = "system"


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="attendance-engine")
    parser.add_argument("--actor", default=SYSTEM_ACTOR, help="actor id stamped on audit entries")
    commands = parser.add_subparsers(dest="command", required=True)

    escalate = commands.add_parser("escalate", help="escalate open items past the payroll cutoff")
    escalate.add_argument("--cutoff", required=True, type=_parse_datetime)

    expiring = commands.add_parser("expiring-shifts", help="list approved shift assignments about to expire")
    expiring.add_argument("--days", type=int, default=None)

    commands.add_parser("missed-punches", help="flag today's records with unmatched punches")

    lateness = commands.add_parser("lateness", help="check an employee against the lateness threshold")
    lateness.add_argument("--employee", required=True)
    lateness.add_argument("--threshold", type=int, default=None)

    export = commands.add_parser("export", help="export an overtime, lateness or exception report")
    export.add_argument("--report-type", required=True, choices=REPORT_TYPES)
    export.add_argument("--format", default="json", choices=EXPORT_FORMATS)
    export.add_argument("--employee", default=None)
    export.add_argument("--start", type=date.fromisoformat, default=None)
    export.add_argument("--end", type=date.fromisoformat, default=None)
    export.add_argument("--output", type=Path, default=None)
    return parser


def run_command(runtime: EngineRuntime, args: argparse.Namespace) -> dict[str, Any]:
    with runtime.session() as db:
        if args.command == "escalate":
            return escalate_unresolved_requests_before_payroll_cutoff(
                db,
                cutoff=args.cutoff,
                actor_id=args.actor,
                audit=runtime.audit,
            )
        if args.command == "expiring-shifts":
            return check_expiring_shift_assignments(
                db,
                days_before_expiry=args.days,
                actor_id=args.actor,
                audit=runtime.audit,
            )
        if args.command == "missed-punches":
            result = detect_missed_punches(db, actor_id=args.actor, audit=runtime.audit)
            return {
                "count": result["count"],
                "records": [AttendanceRecordRead.model_validate(item).model_dump(mode="json") for item in result["records"]],
            }
        if args.command == "lateness":
            return monitor_repeated_lateness(
                db,
                employee_id=args.employee,
                threshold=args.threshold,
                actor_id=args.actor,
                audit=runtime.audit,
                locks=runtime.locks,
            )

        exported = export_report(
            db,
            report_type=args.report_type,
            format=args.format,
            employee_id=args.employee,
            start_date=args.start,
            end_date=args.end,
            actor_id=args.actor,
            audit=runtime.audit,
        )
    data = exported.pop("data")
    if args.output is not None:
        if isinstance(data, bytes):
            args.output.write_bytes(data)
        else:
            args.output.write_text(data, encoding="utf-8")
        exported["output"] = str(args.output)
    elif isinstance(data, bytes):
        exported["bytes"] = len(data)
    else:
        exported["data"] = data
    return exported


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    runtime = EngineRuntime().start()
    try:
        result = run_command(runtime, args)
    except EngineError as exc:
        print(json.dumps(error_payload(exc), ensure_ascii=False, indent=2), file=sys.stderr)
        return 1
    finally:
        runtime.close()
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
