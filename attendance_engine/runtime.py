from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from attendance_engine.audit import AuditSink, SqlAuditSink
from attendance_engine.db import build_engine, build_session_factory
from attendance_engine.locks import EmployeeLockRegistry, get_lock_registry
from attendance_engine.logging_utils import setup_json_logging
from attendance_engine.settings import Settings, get_settings

logger = logging.getLogger("attendance_engine.runtime")


class EngineRuntime:
    """Process-wide wiring: database sessions, the audit sink and employee locks.

    ``start()`` must run before ``session()``; ``close()`` releases the audit
    sink and, when the runtime created it, the database engine.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        engine: Engine | None = None,
        audit: AuditSink | None = None,
        locks: EmployeeLockRegistry | None = None,
        configure_logging: bool = True,
    ) -> None:
        self.settings = settings or get_settings()
        self._engine = engine
        self._owns_engine = engine is None
        self._audit = audit
        self.locks = locks or get_lock_registry()
        self._configure_logging = configure_logging
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def audit(self) -> AuditSink:
        if self._audit is None:
            raise RuntimeError("EngineRuntime is not started")
        return self._audit

    def start(self) -> EngineRuntime:
        if self._session_factory is not None:
            return self
        if self._configure_logging:
            setup_json_logging(self.settings.log_level)
        if self._engine is None:
            self._engine = build_engine(self.settings.database_url)
        self._session_factory = build_session_factory(self._engine)
        if self._audit is None:
            self._audit = SqlAuditSink(self._session_factory)
        logger.info("engine_runtime_started", extra={"app_name": self.settings.app_name})
        return self

    def close(self) -> None:
        if self._session_factory is None:
            return
        close = getattr(self._audit, "close", None)
        if callable(close):
            close()
        if self._owns_engine and self._engine is not None:
            self._engine.dispose()
            self._engine = None
        self._session_factory = None
        logger.info("engine_runtime_closed")

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise RuntimeError("EngineRuntime is not started")
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def __enter__(self) -> EngineRuntime:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()
