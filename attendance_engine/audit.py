from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from attendance_engine.models import AuditLog
from attendance_engine.timeutils import utc_now

logger = logging.getLogger("attendance_engine.audit")


@dataclass(frozen=True)
class AuditEntry:
    entity: str
    change_set: dict[str, Any]
    actor_id: str | None = None
    timestamp: datetime = field(default_factory=utc_now)


class AuditSink(Protocol):
    def append(self, entry: AuditEntry) -> None: ...


class InMemoryAuditSink:
    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def append(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    @property
    def entries(self) -> tuple[AuditEntry, ...]:
        return tuple(self._entries)

    def for_entity(self, entity: str) -> list[AuditEntry]:
        return [entry for entry in self._entries if entry.entity == entity]

    def close(self) -> None:
        return


class SqlAuditSink:
    """Persists entries to ``audit_logs`` through a dedicated session.

    The sink commits on its own so an audit row is only ever written after
    the caller's domain commit has gone through.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def append(self, entry: AuditEntry) -> None:
        with self._session_factory() as db:
            db.add(
                AuditLog(
                    ts_utc=entry.timestamp,
                    entity=entry.entity,
                    actor_id=entry.actor_id,
                    change_set=_jsonable(entry.change_set),
                )
            )
            try:
                db.commit()
            except Exception:
                db.rollback()
                logger.exception(
                    "audit_log_write_failed",
                    extra={"entity": entry.entity, "actor_id": entry.actor_id},
                )
                return

        logger.info(
            "audit_event",
            extra={
                "entity": entry.entity,
                "actor_id": entry.actor_id,
                "change_set": entry.change_set,
            },
        )

    def close(self) -> None:
        return


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def log_time_management_change(
    audit: AuditSink,
    entity: str,
    change_set: dict[str, Any],
    actor_id: str | None,
) -> None:
    audit.append(AuditEntry(entity=entity, change_set=change_set, actor_id=actor_id))


def log_attendance_change(
    audit: AuditSink,
    *,
    employee_id: str,
    action: str,
    payload: dict[str, Any],
    actor_id: str | None,
) -> None:
    log_time_management_change(
        audit,
        "ATTENDANCE",
        {"employee_id": employee_id, "action": action, **payload},
        actor_id,
    )
