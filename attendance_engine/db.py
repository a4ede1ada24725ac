from __future__ import annotations

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from attendance_engine.settings import get_settings


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str | None = None, **kwargs) -> Engine:
    url = database_url or get_settings().database_url
    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)
