"""SQLAlchemy engine factory and session helpers.

This module provides:

* ``create_usage_engine``    -- Create a SA engine from a URL.
* ``UsageSession``           -- A pre-configured ``Session`` subclass.
* ``usage_session_factory``  -- ``sessionmaker`` producing ``UsageSession``.
* ``init_schema``            -- Create every table declared on ``UsageBase``.

Tags:
    usage-spine, orm, sqlalchemy, session, engine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from usage_spine.core.orm.base import UsageBase


def create_usage_engine(url: str = "sqlite:///usage.db", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    For file-backed SQLite the parent directory is created and WAL mode
    plus foreign keys are switched on for every connection.  In-memory
    SQLite uses a ``StaticPool`` so all sessions share one database.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, log all SQL.
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    if not url.startswith("sqlite"):
        return _sa_create_engine(url, echo=echo, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    database = make_url(url).database
    in_memory = not database or database == ":memory:"
    if in_memory:
        kwargs.setdefault("poolclass", StaticPool)
    else:
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = _sa_create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class UsageSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    Prevents lazy-load surprises after commit.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def usage_session_factory(engine: Engine) -> sessionmaker[UsageSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``UsageSession`` instances."""
    return sessionmaker(bind=engine, class_=UsageSession, expire_on_commit=False)


def init_schema(engine: Engine) -> list[str]:
    """Create all tables that do not exist yet.  Returns every managed table name."""
    UsageBase.metadata.create_all(engine)
    return sorted(UsageBase.metadata.tables)
