"""Table definitions — usage records (ingestion-owned) and sync status (push-owned).

The ingestion pipeline writes ``users``, ``machines``, ``projects``,
``sessions`` and ``messages``; the push engine only reads them.  The
push engine is the sole writer of ``sync_status``.

Tags:
    usage-spine, orm, sqlalchemy, tables

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from usage_spine.core.orm.base import UsageBase

_NOW = text("(datetime('now'))")


class UserTable(UsageBase):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    email: Mapped[str | None] = mapped_column(Text)
    username: Mapped[str | None] = mapped_column(Text)


class MachineTable(UsageBase):
    __tablename__ = "machines"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, ForeignKey("users.id"), nullable=False)
    machine_name: Mapped[str | None] = mapped_column(Text)
    os_info: Mapped[str | None] = mapped_column(Text)


class ProjectTable(UsageBase):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    project_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_id: Mapped[str] = mapped_column(Text, ForeignKey("users.id"), nullable=False)
    machine_id: Mapped[str] = mapped_column(Text, ForeignKey("machines.id"), nullable=False)

    machine: Mapped[MachineTable] = relationship("MachineTable")


class SessionTable(UsageBase):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    project_id: Mapped[str] = mapped_column(Text, ForeignKey("projects.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(Text, ForeignKey("users.id"), nullable=False)
    machine_id: Mapped[str] = mapped_column(Text, ForeignKey("machines.id"), nullable=False)

    project: Mapped[ProjectTable] = relationship("ProjectTable")


class MessageTable(UsageBase):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_timestamp", "timestamp"),
        Index("ix_messages_session_id", "session_id"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    message_id: Mapped[str] = mapped_column(Text, nullable=False)
    request_id: Mapped[str | None] = mapped_column(Text)
    session_id: Mapped[str] = mapped_column(Text, ForeignKey("sessions.id"), nullable=False)
    project_id: Mapped[str] = mapped_column(Text, ForeignKey("projects.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(Text, ForeignKey("users.id"), nullable=False)
    machine_id: Mapped[str] = mapped_column(Text, ForeignKey("machines.id"), nullable=False)
    timestamp: Mapped[datetime.datetime | None] = mapped_column(DateTime)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(Text)
    writer: Mapped[str] = mapped_column(Text, nullable=False, default="agent")

    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cache_creation_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cache_read_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    price_per_input_token: Mapped[float | None] = mapped_column(Float)
    price_per_output_token: Mapped[float | None] = mapped_column(Float)
    price_per_cache_write_token: Mapped[float | None] = mapped_column(Float)
    price_per_cache_read_token: Mapped[float | None] = mapped_column(Float)
    cache_duration_minutes: Mapped[int | None] = mapped_column(Integer)
    message_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # --- relationships ---
    session: Mapped[SessionTable] = relationship("SessionTable")
    project: Mapped[ProjectTable] = relationship("ProjectTable")
    machine: Mapped[MachineTable] = relationship("MachineTable")
    user: Mapped[UserTable] = relationship("UserTable")
    sync_status: Mapped[SyncStatusTable | None] = relationship(
        "SyncStatusTable", back_populates="message", uselist=False
    )


class SyncStatusTable(UsageBase):
    """Push state for one message.

    Eligible for push iff ``synced_at IS NULL AND retry_count < max_retries``.
    ``synced_at`` is written once and never cleared.
    """

    __tablename__ = "sync_status"
    __table_args__ = (
        Index("ix_sync_status_pending", "synced_at", "retry_count"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(
        Text, ForeignKey("messages.id"), unique=True, nullable=False
    )
    local_timestamp: Mapped[datetime.datetime] = mapped_column(
        DateTime, nullable=False, server_default=_NOW
    )
    synced_at: Mapped[datetime.datetime | None] = mapped_column(DateTime)
    sync_batch_id: Mapped[str | None] = mapped_column(Text)
    sync_response: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    message: Mapped[MessageTable] = relationship("MessageTable", back_populates="sync_status")


__all__ = [
    "UserTable",
    "MachineTable",
    "ProjectTable",
    "SessionTable",
    "MessageTable",
    "SyncStatusTable",
]
