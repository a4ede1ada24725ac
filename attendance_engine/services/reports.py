from __future__ import annotations

import csv
import io
import json
import logging
from collections import Counter
from datetime import date, datetime
from io import BytesIO
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.audit import AuditSink, log_time_management_change
from attendance_engine.errors import InvalidFormatError, InvalidReportTypeError
from attendance_engine.models import AttendanceRecord, TimeException, TimeExceptionType
from attendance_engine.schemas import AttendanceRecordRead, ReportRecord, TimeExceptionRead
from attendance_engine.settings import get_settings
from attendance_engine.timeutils import utc_day_end, utc_day_start, utc_now

logger = logging.getLogger("attendance_engine.reports")

REPORT_TYPES = ("overtime", "lateness", "exception")
EXPORT_FORMATS = ("json", "csv", "text", "xlsx")

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _fetch_exception_rows(
    db: Session,
    *,
    exception_type: TimeExceptionType | None,
    employee_id: str | None,
    start_date: date | None,
    end_date: date | None,
) -> list[tuple[TimeException, AttendanceRecord | None]]:
    stmt = select(TimeException, AttendanceRecord).outerjoin(
        AttendanceRecord,
        AttendanceRecord.id == TimeException.attendance_record_id,
    )
    if exception_type is not None:
        stmt = stmt.where(TimeException.type == exception_type)
    if employee_id:
        stmt = stmt.where(TimeException.employee_id == employee_id)
    if start_date and end_date:
        stmt = stmt.where(
            TimeException.created_at >= utc_day_start(start_date),
            TimeException.created_at <= utc_day_end(end_date),
        )
    stmt = stmt.order_by(TimeException.created_at.asc(), TimeException.id.asc())
    return [(exception, record) for exception, record in db.execute(stmt).all()]


def _serialize_row(exception: TimeException, record: AttendanceRecord | None) -> dict[str, Any]:
    payload = TimeExceptionRead.model_validate(exception).model_dump()
    attendance = AttendanceRecordRead.model_validate(record) if record is not None else None
    return ReportRecord(**payload, attendance_record=attendance).model_dump(mode="json")


def _build_report(
    report_type: str,
    *,
    employee_id: str | None,
    start_date: date | None,
    end_date: date | None,
    records: list[dict[str, Any]],
    summary: dict[str, Any],
) -> dict[str, Any]:
    return {
        "report_type": report_type,
        "employee_id": employee_id,
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
        "records": records,
        "summary": summary,
    }


def _audit_report(
    audit: AuditSink,
    entity: str,
    *,
    employee_id: str | None,
    start_date: date | None,
    end_date: date | None,
    actor_id: str,
    **extra: Any,
) -> None:
    log_time_management_change(
        audit,
        entity,
        {"employee_id": employee_id, "start_date": start_date, "end_date": end_date, **extra},
        actor_id,
    )


def overtime_minutes(worked_minutes: int, standard_minutes: int | None = None) -> int:
    if standard_minutes is None:
        standard_minutes = get_settings().standard_work_minutes
    return max(0, worked_minutes - standard_minutes)


def generate_overtime_report(
    db: Session,
    *,
    actor_id: str,
    audit: AuditSink,
    employee_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    rows = _fetch_exception_rows(
        db,
        exception_type=TimeExceptionType.OVERTIME_REQUEST,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
    )
    total_overtime = sum(overtime_minutes(record.total_work_minutes) for _, record in rows if record is not None)

    _audit_report(
        audit,
        "OVERTIME_REPORT_GENERATED",
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        actor_id=actor_id,
        count=len(rows),
        total_overtime_minutes=total_overtime,
    )
    return _build_report(
        "overtime",
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        records=[_serialize_row(exception, record) for exception, record in rows],
        summary={
            "total_records": len(rows),
            "total_overtime_minutes": total_overtime,
            "total_overtime_hours": round(total_overtime / 60, 2),
        },
    )


def generate_lateness_report(
    db: Session,
    *,
    actor_id: str,
    audit: AuditSink,
    employee_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    rows = _fetch_exception_rows(
        db,
        exception_type=TimeExceptionType.LATE,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
    )

    _audit_report(
        audit,
        "LATENESS_REPORT_GENERATED",
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        actor_id=actor_id,
        count=len(rows),
    )
    return _build_report(
        "lateness",
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        records=[_serialize_row(exception, record) for exception, record in rows],
        summary={
            "total_records": len(rows),
            "employees": len({exception.employee_id for exception, _ in rows}),
        },
    )


def generate_exception_report(
    db: Session,
    *,
    actor_id: str,
    audit: AuditSink,
    employee_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    rows = _fetch_exception_rows(
        db,
        exception_type=None,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
    )
    by_type = Counter(exception.type.value for exception, _ in rows)

    _audit_report(
        audit,
        "EXCEPTION_REPORT_GENERATED",
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        actor_id=actor_id,
        count=len(rows),
    )
    return _build_report(
        "exception",
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        records=[_serialize_row(exception, record) for exception, record in rows],
        summary={
            "total_records": len(rows),
            "by_type": [{"type": key, "count": count} for key, count in by_type.items()],
        },
    )


GENERATORS = {
    "overtime": generate_overtime_report,
    "lateness": generate_lateness_report,
    "exception": generate_exception_report,
}


def _cell(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if value is None:
        return ""
    return value


def format_as_json(report: dict[str, Any]) -> str:
    return json.dumps(report, indent=2, default=str)


def format_as_csv(report: dict[str, Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    summary = report.get("summary") or {}
    if summary:
        writer.writerow(["Summary"])
        for key, value in summary.items():
            writer.writerow([key, _cell(value)])
        writer.writerow([])

    records = report.get("records") or []
    if records:
        writer.writerow(["Records"])
        headers = list(records[0].keys())
        writer.writerow(headers)
        for record in records:
            writer.writerow([_cell(record.get(key)) for key in headers])

    return buffer.getvalue().rstrip("\n")


def _text_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if value is None or value == "":
        return "N/A"
    return str(value)


def format_as_text(report: dict[str, Any], *, generated_at: datetime | None = None) -> str:
    lines = [
        f"Report Type: {report.get('report_type') or 'N/A'}",
        f"Generated: {(generated_at or utc_now()).isoformat()}",
    ]
    if report.get("start_date"):
        lines.append(f"Start Date: {report['start_date']}")
    if report.get("end_date"):
        lines.append(f"End Date: {report['end_date']}")
    lines.append("")

    summary = report.get("summary") or {}
    if summary:
        lines.append("Summary:")
        lines.extend(f"  {key}: {_text_value(value)}" for key, value in summary.items())
        lines.append("")

    records = report.get("records") or []
    if records:
        lines.append(f"Records ({len(records)}):")
        for index, record in enumerate(records, start=1):
            lines.append(f"  Record {index}:")
            lines.extend(f"    {key}: {_text_value(value)}" for key, value in record.items())
            lines.append("")

    return "\n".join(lines)


def _style_header(ws: Worksheet, row: int = 1) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = max((len(str(cell.value)) for cell in column_cells if cell.value is not None), default=0)
        ws.column_dimensions[get_column_letter(column_cells[0].column)].width = min(max_len + 2, 45)


def build_report_xlsx_bytes(report: dict[str, Any]) -> bytes:
    wb = Workbook()
    summary_ws = wb.active
    summary_ws.title = "Summary"
    summary_ws.append(["Report Type", report.get("report_type")])
    summary_ws.append(["Employee", report.get("employee_id") or "-"])
    summary_ws.append(["Start Date", report.get("start_date") or "-"])
    summary_ws.append(["End Date", report.get("end_date") or "-"])
    for key, value in (report.get("summary") or {}).items():
        summary_ws.append([key, _cell(value)])
    for row in summary_ws.iter_rows(min_row=1, max_row=summary_ws.max_row, max_col=1):
        row[0].font = BOLD_FONT
    _auto_width(summary_ws)

    records_ws = wb.create_sheet("Records")
    records = report.get("records") or []
    if records:
        headers = list(records[0].keys())
        records_ws.append(headers)
        _style_header(records_ws)
        for record in records:
            records_ws.append([_cell(record.get(key)) for key in headers])
        records_ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}{records_ws.max_row}"
        records_ws.freeze_panes = "A2"
    _auto_width(records_ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()


def export_report(
    db: Session,
    *,
    report_type: str,
    actor_id: str,
    audit: AuditSink,
    format: str = "json",
    employee_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    generator = GENERATORS.get(report_type)
    if generator is None:
        raise InvalidReportTypeError(f"Invalid report type: {report_type}")
    export_format = format or "json"
    if export_format not in EXPORT_FORMATS:
        raise InvalidFormatError(f"Invalid export format: {export_format}")

    report = generator(
        db,
        actor_id=actor_id,
        audit=audit,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
    )
    generated_at = utc_now()

    data: str | bytes
    if export_format == "csv":
        data = format_as_csv(report)
    elif export_format == "text":
        data = format_as_text(report, generated_at=generated_at)
    elif export_format == "xlsx":
        data = build_report_xlsx_bytes(report)
    else:
        data = format_as_json(report)

    log_time_management_change(
        audit,
        "REPORT_EXPORTED",
        {"report_type": report_type, "format": export_format, "employee_id": employee_id},
        actor_id,
    )
    logger.info(
        "report_exported",
        extra={"report_type": report_type, "format": export_format, "records": len(report["records"])},
    )
    return {
        "report_type": report_type,
        "format": export_format,
        "data": data,
        "generated_at": generated_at,
    }
