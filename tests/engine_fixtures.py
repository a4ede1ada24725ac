from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import attendance_engine.models  # noqa: F401
from attendance_engine.audit import InMemoryAuditSink
from attendance_engine.db import Base, build_session_factory
from attendance_engine.locks import EmployeeLockRegistry


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class EngineTestMixin:
    """Fresh in-memory SQLite schema, audit sink and lock registry per test."""

    def setUp(self) -> None:  # type: ignore[override]
        super().setUp()  # type: ignore[misc]
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = build_session_factory(self.engine)
        self.db: Session = self.session_factory()
        self.audit = InMemoryAuditSink()
        self.locks = EmployeeLockRegistry()

    def tearDown(self) -> None:  # type: ignore[override]
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()
        super().tearDown()  # type: ignore[misc]

    def entities(self) -> list[str]:
        return [entry.entity for entry in self.audit.entries]

    def attendance_actions(self) -> list[str]:
        return [entry.change_set["action"] for entry in self.audit.for_entity("ATTENDANCE")]
