"""
Wire models for the push endpoint.

Request and response bodies are camelCase JSON; the Python side uses
snake_case attributes.  Every model accepts either spelling on input
(``populate_by_name``) and :meth:`PushRequest.to_wire` always emits the
camelCase form.

Tags:
    pydantic, wire-format, push, usage-spine

Doc-Types:
    - API Reference
    - Wire Protocol
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for all camelCase wire models."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# =============================================================================
# REQUEST
# =============================================================================


class WireMessage(WireModel):
    """One usage record as sent to the server (ids already transformed)."""

    id: str
    session_id: str
    project_id: str
    machine_id: str
    user_id: str
    role: str
    model: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    price_per_input_token: float | None = None
    price_per_output_token: float | None = None
    price_per_cache_write_token: float | None = None
    price_per_cache_read_token: float | None = None
    cache_duration_minutes: int | None = None
    message_cost: float = 0.0
    timestamp: str | None = None
    writer: str = "agent"


class MachineEntity(WireModel):
    id: str
    user_id: str
    machine_name: str | None = None
    local_machine_id: str


class ProjectEntity(WireModel):
    id: str
    project_name: str = ""
    user_id: str
    client_machine_id: str


class SessionEntity(WireModel):
    id: str
    project_id: str
    user_id: str
    client_machine_id: str


class PushEntities(WireModel):
    """Referenced entities, keyed and deduplicated by transformed id."""

    machines: dict[str, MachineEntity] = Field(default_factory=dict)
    projects: dict[str, ProjectEntity] = Field(default_factory=dict)
    sessions: dict[str, SessionEntity] = Field(default_factory=dict)


class PushRequest(WireModel):
    messages: list[WireMessage] = Field(default_factory=list)
    entities: PushEntities = Field(default_factory=PushEntities)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON body."""
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# RESPONSE
# =============================================================================


class IdSet(WireModel):
    count: int = 0
    message_ids: list[str] = Field(default_factory=list)


class FailureDetail(WireModel):
    message_id: str
    code: str = "UNKNOWN"
    error: str = ""

    @property
    def response_tag(self) -> str:
        """Value stored in ``sync_status.sync_response`` for this failure."""
        return f"failed: {self.code} - {self.error}"


class FailedSet(WireModel):
    count: int = 0
    details: list[FailureDetail] = Field(default_factory=list)


class PushResults(WireModel):
    persisted: IdSet = Field(default_factory=IdSet)
    deduplicated: IdSet = Field(default_factory=IdSet)
    failed: FailedSet = Field(default_factory=FailedSet)


class PushSummary(WireModel):
    total_messages: int = 0
    messages_succeeded: int = 0
    messages_failed: int = 0
    processing_time_ms: int = 0


class PushResponse(WireModel):
    """Per-record verdict for one batch.

    ``syncId`` is optional; servers that omit it still reconcile.
    """

    sync_id: str | None = None
    results: PushResults
    summary: PushSummary | None = None


class HealthUser(WireModel):
    id: str
    email: str | None = None


class HealthMachine(WireModel):
    id: str
    name: str | None = None


class HealthResponse(WireModel):
    status: str = "ok"
    user: HealthUser | None = None
    machine: HealthMachine | None = None


class ErrorBody(WireModel):
    """Structured error body: ``{code, message}``."""

    code: str
    message: str = ""


__all__ = [
    "WireMessage",
    "MachineEntity",
    "ProjectEntity",
    "SessionEntity",
    "PushEntities",
    "PushRequest",
    "IdSet",
    "FailureDetail",
    "FailedSet",
    "PushResults",
    "PushSummary",
    "PushResponse",
    "HealthUser",
    "HealthMachine",
    "HealthResponse",
    "ErrorBody",
]
