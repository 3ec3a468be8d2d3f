"""
Request-scoped context for operations.

Every operation function receives an :class:`OperationContext` as its first
argument.  The context carries the session factory, the effective settings,
the credential provider, the dry-run flag, and arbitrary metadata.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from usage_spine.auth.credentials import CredentialProvider, FileCredentialProvider
from usage_spine.core.orm import create_usage_engine, init_schema, usage_session_factory
from usage_spine.core.settings import UsageSpineSettings, get_settings


@dataclass
class OperationContext:
    """Context passed to every operation function.

    Attributes:
        session_factory: Produces SQLAlchemy sessions bound to the local store.
        engine: Engine behind the factory (needed for schema operations).
        settings: Effective :class:`UsageSpineSettings`.
        credentials: Credential provider (``None`` → read ``settings.credentials_file``).
        request_id: Unique ID for this operation invocation (auto-generated).
        caller: Origin of the request: ``"cli"`` or ``"sdk"``.
        dry_run: When ``True``, operations return a preview without side effects.
        metadata: Arbitrary key/value pairs forwarded to logging.
    """

    session_factory: Callable[[], Session]
    engine: Engine | None = None
    settings: UsageSpineSettings = field(default_factory=get_settings)
    credentials: CredentialProvider | None = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: str = "sdk"
    dry_run: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def get_credentials(self) -> CredentialProvider:
        if self.credentials is None:
            self.credentials = FileCredentialProvider(self.settings.credentials_file)
        return self.credentials


def make_context(
    settings: UsageSpineSettings | None = None,
    *,
    database_url: str | None = None,
    credentials: CredentialProvider | None = None,
    caller: str = "sdk",
    dry_run: bool = False,
    ensure_schema: bool = True,
) -> OperationContext:
    """Open the local store described by *settings* and wrap it in a context.

    Tables are created if they do not exist yet unless *ensure_schema* is off.
    """
    settings = settings or get_settings()
    engine = create_usage_engine(database_url or settings.database_url, echo=settings.database_echo)
    if ensure_schema:
        init_schema(engine)
    return OperationContext(
        session_factory=usage_session_factory(engine),
        engine=engine,
        settings=settings,
        credentials=credentials,
        caller=caller,
        dry_run=dry_run,
    )
