"""SQLAlchemy 2.0 ORM layer for usage-spine.

Modules
-------
base        UsageBase (declarative base)
session     Engine factory, UsageSession, schema init
tables      Usage record tables + SyncStatusTable

Tags:
    usage-spine, orm, sqlalchemy, declarative

Doc-Types:
    package-overview, module-index
"""

from __future__ import annotations

from usage_spine.core.orm.base import UsageBase
from usage_spine.core.orm.session import (
    UsageSession,
    create_usage_engine,
    init_schema,
    usage_session_factory,
)
from usage_spine.core.orm.tables import (
    MachineTable,
    MessageTable,
    ProjectTable,
    SessionTable,
    SyncStatusTable,
    UserTable,
)

__all__ = [
    "UsageBase",
    "UsageSession",
    "create_usage_engine",
    "init_schema",
    "usage_session_factory",
    "UserTable",
    "MachineTable",
    "ProjectTable",
    "SessionTable",
    "MessageTable",
    "SyncStatusTable",
]
