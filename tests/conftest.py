"""
Shared pytest fixtures for usage-spine tests.

This module provides:
- An in-memory SQLite store with the full schema
- A seeding helper for usage records and sync-status rows
- Static credentials
- A scriptable fake push server served through ``httpx.MockTransport``

Usage:
    def test_something(session_factory, seed, fake_server, push_transport):
        seed(5)
        ...
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import structlog

from usage_spine.auth.credentials import StaticCredentialProvider
from usage_spine.core.orm import (
    MachineTable,
    MessageTable,
    ProjectTable,
    SessionTable,
    SyncStatusTable,
    UserTable,
    create_usage_engine,
    init_schema,
    usage_session_factory,
)
from usage_spine.core.settings import UsageSpineSettings, clear_settings_cache
from usage_spine.push.transport import PushTransport

API_BASE = "https://api.test"
TOKEN = "tok-secret-123"
SERVER_USER_ID = "user-server-42"
LOCAL_USER_ID = "anon-local-1"


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Point settings at a temp data dir and drop the settings cache around each test."""
    for key in list(os.environ):
        if key.startswith("USAGE_SPINE_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("USAGE_SPINE_DATA_DIR", str(tmp_path / "data"))
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Store
# =============================================================================


@pytest.fixture
def engine():
    eng = create_usage_engine("sqlite://")
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return usage_session_factory(engine)


BASE_TIME = datetime(2025, 6, 1, 12, 0, 0)


def seed_messages(
    session_factory,
    count: int,
    *,
    retry_count: int | None = None,
    synced: bool = False,
    sync_rows: bool = True,
    prefix: str = "msg",
    start: int = 0,
    model: str = "claude-sonnet",
) -> list[str]:
    """Insert *count* messages (oldest first) plus their entities.

    ``retry_count=None`` with ``sync_rows=True`` creates fresh rows
    (``retry_count = 0``); ``sync_rows=False`` leaves them for lazy creation.
    """
    ids = [f"{prefix}-{i:03d}" for i in range(start, start + count)]
    with session_factory() as session, session.begin():
        if session.get(UserTable, LOCAL_USER_ID) is None:
            # No relationship() links the entity tables, so each parent is
            # flushed before its children to keep FK insert order.
            session.add(UserTable(id=LOCAL_USER_ID, email="dev@example.com", username="dev"))
            session.flush()
            session.add(MachineTable(id="machine-1", user_id=LOCAL_USER_ID, machine_name="laptop", os_info="linux"))
            session.flush()
            session.add(ProjectTable(id="project-1", project_name="demo", user_id=LOCAL_USER_ID, machine_id="machine-1"))
            session.flush()
            session.add(SessionTable(id="session-1", project_id="project-1", user_id=LOCAL_USER_ID, machine_id="machine-1"))
            session.flush()
        for offset, local_id in enumerate(ids):
            session.add(
                MessageTable(
                    id=local_id,
                    message_id=f"upstream-{local_id}",
                    session_id="session-1",
                    project_id="project-1",
                    user_id=LOCAL_USER_ID,
                    machine_id="machine-1",
                    timestamp=BASE_TIME + timedelta(minutes=start + offset),
                    role="assistant" if offset % 2 else "user",
                    model=model,
                    writer="agent",
                    input_tokens=100,
                    output_tokens=50,
                    cache_creation_tokens=10,
                    cache_read_tokens=5,
                    price_per_input_token=0.000003,
                    price_per_output_token=0.000015,
                    message_cost=0.00105,
                )
            )
        session.flush()
        if sync_rows:
            for local_id in ids:
                session.add(
                    SyncStatusTable(
                        message_id=local_id,
                        retry_count=retry_count or 0,
                        synced_at=BASE_TIME if synced else None,
                        sync_response="persisted" if synced else None,
                    )
                )
    return ids


@pytest.fixture
def seed(session_factory) -> Callable[..., list[str]]:
    def _seed(count: int, **kwargs: Any) -> list[str]:
        return seed_messages(session_factory, count, **kwargs)

    return _seed


def sync_rows(session_factory) -> dict[str, SyncStatusTable]:
    """All sync-status rows keyed by message id."""
    with session_factory() as session:
        return {row.message_id: row for row in session.query(SyncStatusTable).all()}


# =============================================================================
# Credentials
# =============================================================================


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider(TOKEN, SERVER_USER_ID, "dev@example.com")


@pytest.fixture
def credentials_file(tmp_path: Path) -> Path:
    path = tmp_path / "user_info.json"
    path.write_text(
        json.dumps(
            {
                "userId": LOCAL_USER_ID,
                "auth": {"realUserId": SERVER_USER_ID, "email": "dev@example.com", "apiToken": TOKEN},
            }
        ),
        encoding="utf-8",
    )
    return path


# =============================================================================
# Fake server
# =============================================================================


PushHandler = Callable[[dict[str, Any]], httpx.Response]


def all_persisted(body: dict[str, Any]) -> httpx.Response:
    ids = [m["id"] for m in body["messages"]]
    return httpx.Response(
        200,
        json={
            "syncId": f"sync-{len(ids)}-{ids[0][:8] if ids else 'none'}",
            "results": {
                "persisted": {"count": len(ids), "messageIds": ids},
                "deduplicated": {"count": 0, "messageIds": []},
                "failed": {"count": 0, "details": []},
            },
            "summary": {
                "totalMessages": len(ids),
                "messagesSucceeded": len(ids),
                "messagesFailed": 0,
                "processingTimeMs": 3,
            },
        },
    )


@dataclass
class FakeServer:
    """Scriptable stand-in for the push service.

    ``push_responses`` is consumed one entry per push call; once empty,
    ``default_push`` answers.  An entry may be an ``httpx.Response``, a
    handler taking the decoded body, or an exception to raise.
    """

    health_status: int = 200
    health_body: dict[str, Any] = field(
        default_factory=lambda: {"status": "ok", "user": {"id": SERVER_USER_ID, "email": "dev@example.com"}}
    )
    health_sequence: list[int] = field(default_factory=list)
    push_responses: list[Any] = field(default_factory=list)
    default_push: PushHandler = all_persisted
    requests: list[httpx.Request] = field(default_factory=list)
    push_bodies: list[dict[str, Any]] = field(default_factory=list)

    @property
    def health_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith("/health"))

    @property
    def push_calls(self) -> int:
        return len(self.push_bodies)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/health"):
            status = self.health_sequence.pop(0) if self.health_sequence else self.health_status
            if status == 200:
                return httpx.Response(200, json=self.health_body)
            return httpx.Response(status, json={"code": "AUTH_002", "message": "Session expired"})

        body = json.loads(request.content)
        self.push_bodies.append(body)
        if self.push_responses:
            scripted = self.push_responses.pop(0)
            if isinstance(scripted, Exception):
                raise scripted
            if isinstance(scripted, httpx.Response):
                return scripted
            return scripted(body)
        return self.default_push(body)


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def push_transport(fake_server: FakeServer, credentials) -> Generator[PushTransport, None, None]:
    client = PushTransport(API_BASE, credentials, transport=httpx.MockTransport(fake_server))
    yield client
    client.close()


@pytest.fixture
def settings(tmp_path: Path) -> UsageSpineSettings:
    return UsageSpineSettings(data_dir=tmp_path / "data", api_base_url=API_BASE)


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    """CLI runs bind structlog and the root logger to a captured stream; undo that."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
