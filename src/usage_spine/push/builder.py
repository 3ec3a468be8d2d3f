"""
Batch builder: selected message ids → wire payload.

Loads each selected message with its session, project and machine rows,
rewrites every identifier through the session's
:class:`~usage_spine.core.namespace.NamespaceTransformer`, and assembles a
:class:`PushBatch` that the reconciler can map back onto local rows.

Manifesto:
    - **Nothing leaves untransformed:** message, session, project and
      machine ids are all rewritten; ``userId`` is the authenticated id
    - **Nothing is dropped silently:** ids whose message row cannot be
      loaded stay in the batch as ``missing_ids`` so they are failed
      locally instead of lingering eligible forever
    - **Entities once:** entity maps are keyed by transformed id

Tags:
    usage-spine, push, batch, namespace, wire-format

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from usage_spine.core.logging import get_logger
from usage_spine.core.namespace import NamespaceTransformer
from usage_spine.core.orm.tables import MessageTable
from usage_spine.core.timestamps import to_iso8601
from usage_spine.push.models import (
    MachineEntity,
    ProjectEntity,
    PushEntities,
    PushRequest,
    SessionEntity,
    WireMessage,
)

logger = get_logger(__name__)


@dataclass(slots=True)
class PushBatch:
    """One bounded slice of eligible messages, ready to transmit.

    Attributes:
        batch_number: 1-based index within the push session.
        request: Wire payload (transformed ids only).
        id_map: Transformed message id → local message id.
        local_ids: Every id that was selected, in selection order.
        missing_ids: Selected ids whose message row could not be loaded.
        model_counts: Messages per model (``"unknown"`` when unset).
        role_counts: Messages per role.
    """

    batch_number: int
    request: PushRequest
    id_map: dict[str, str] = field(default_factory=dict)
    local_ids: list[str] = field(default_factory=list)
    missing_ids: list[str] = field(default_factory=list)
    model_counts: dict[str, int] = field(default_factory=dict)
    role_counts: dict[str, int] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.local_ids)

    @property
    def transmitted(self) -> int:
        return len(self.request.messages)


class BatchBuilder:
    """Builds :class:`PushBatch` objects for one authenticated user."""

    def __init__(self, transformer: NamespaceTransformer) -> None:
        self.transformer = transformer

    @property
    def user_id(self) -> str:
        return self.transformer.user_id

    def _load(self, session: Session, message_ids: list[str]) -> dict[str, MessageTable]:
        stmt = (
            select(MessageTable)
            .where(MessageTable.id.in_(message_ids))
            .options(
                joinedload(MessageTable.session),
                joinedload(MessageTable.project),
                joinedload(MessageTable.machine),
            )
        )
        return {msg.id: msg for msg in session.scalars(stmt).unique()}

    def build(self, session: Session, batch_number: int, message_ids: list[str]) -> PushBatch:
        rows = self._load(session, message_ids)
        t = self.transformer
        entities = PushEntities()
        messages: list[WireMessage] = []
        id_map: dict[str, str] = {}
        missing: list[str] = []
        models: Counter[str] = Counter()
        roles: Counter[str] = Counter()

        for local_id in message_ids:
            msg = rows.get(local_id)
            if msg is None:
                missing.append(local_id)
                continue

            message_tid = t(msg.id)
            machine_tid = t(msg.machine_id)
            project_tid = t(msg.project_id)
            session_tid = t(msg.session_id)
            id_map[message_tid] = msg.id

            if machine_tid not in entities.machines:
                entities.machines[machine_tid] = MachineEntity(
                    id=machine_tid,
                    user_id=self.user_id,
                    machine_name=msg.machine.machine_name if msg.machine else None,
                    local_machine_id=msg.machine_id,
                )
            if project_tid not in entities.projects:
                entities.projects[project_tid] = ProjectEntity(
                    id=project_tid,
                    project_name=(msg.project.project_name if msg.project else "") or "",
                    user_id=self.user_id,
                    client_machine_id=machine_tid,
                )
            if session_tid not in entities.sessions:
                entities.sessions[session_tid] = SessionEntity(
                    id=session_tid,
                    project_id=project_tid,
                    user_id=self.user_id,
                    client_machine_id=machine_tid,
                )

            messages.append(
                WireMessage(
                    id=message_tid,
                    session_id=session_tid,
                    project_id=project_tid,
                    machine_id=machine_tid,
                    user_id=self.user_id,
                    role=msg.role,
                    model=msg.model,
                    input_tokens=msg.input_tokens,
                    output_tokens=msg.output_tokens,
                    cache_creation_tokens=msg.cache_creation_tokens,
                    cache_read_tokens=msg.cache_read_tokens,
                    price_per_input_token=msg.price_per_input_token,
                    price_per_output_token=msg.price_per_output_token,
                    price_per_cache_write_token=msg.price_per_cache_write_token,
                    price_per_cache_read_token=msg.price_per_cache_read_token,
                    cache_duration_minutes=msg.cache_duration_minutes,
                    message_cost=msg.message_cost,
                    timestamp=to_iso8601(msg.timestamp),
                    writer=msg.writer,
                )
            )
            models[msg.model or "unknown"] += 1
            roles[msg.role] += 1

        if missing:
            logger.warning("push_batch_missing_rows", batch_number=batch_number, missing=len(missing))

        return PushBatch(
            batch_number=batch_number,
            request=PushRequest(messages=messages, entities=entities),
            id_map=id_map,
            local_ids=list(message_ids),
            missing_ids=missing,
            model_counts=dict(models),
            role_counts=dict(roles),
        )


__all__ = ["PushBatch", "BatchBuilder"]
