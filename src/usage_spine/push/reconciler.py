"""
Response reconciler: apply a batch verdict to ``sync_status``.

Every message of a transmitted batch ends reconciliation in exactly one
of two states: ``synced_at`` set, or ``retry_count`` incremented.  The
whole batch is applied in one transaction; a storage failure rolls it
back and surfaces as :class:`ReconciliationError`, leaving every row of
the batch eligible as before.

Resolution rules:
    - persisted / deduplicated → ``synced_at = now``, tagged, ``sync_batch_id = syncId``
    - failed → ``retry_count += 1``, tagged ``failed: <code> - <message>``
    - in the batch but not reported → ``failed: UNREPORTED - not reported by server``
    - selected but message row missing → ``failed: MISSING - message row not found``
    - reported but not in the batch → ignored (logged)
    - reported as both success and failure → success wins (logged)

Tags:
    usage-spine, push, reconciliation, transaction, sync-status

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from usage_spine.core.errors import ReconciliationError, UsageSpineError
from usage_spine.core.logging import get_logger
from usage_spine.core.timestamps import utc_now_naive
from usage_spine.push.builder import PushBatch
from usage_spine.push.models import PushResponse
from usage_spine.push.selector import SyncStatusRepository

logger = get_logger(__name__)

PERSISTED = "persisted"
DEDUPLICATED = "deduplicated"
UNREPORTED_TAG = "failed: UNREPORTED - not reported by server"
MISSING_TAG = "failed: MISSING - message row not found"


def failure_tag(code: str, message: str) -> str:
    return f"failed: {code} - {message}"


@dataclass(frozen=True, slots=True)
class FailureRecord:
    """One failed message, by local id."""

    message_id: str
    code: str
    message: str


@dataclass(slots=True)
class ReconcileOutcome:
    persisted: int = 0
    deduplicated: int = 0
    failed: int = 0
    unreported: int = 0
    missing: int = 0
    ignored: int = 0
    failures: list[FailureRecord] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return self.persisted + self.deduplicated


class ResponseReconciler:
    """Applies push outcomes onto local sync state.

    Args:
        session_factory: Produces one session per batch.
        max_retries: Retry ceiling (used by the repository's predicates).
        clock: Returns the naive-UTC timestamp written to ``synced_at``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        *,
        max_retries: int = 5,
        clock: Callable[[], datetime] = utc_now_naive,
    ) -> None:
        self._session_factory = session_factory
        self.max_retries = max_retries
        self._clock = clock

    def apply(self, batch: PushBatch, response: PushResponse | None) -> ReconcileOutcome:
        """Apply a per-record verdict.  ``None`` means nothing was transmitted."""
        outcome = ReconcileOutcome()
        sent = set(batch.id_map.values())

        def resolve(transformed_ids: list[str]) -> list[str]:
            local_ids = []
            for tid in transformed_ids:
                local = batch.id_map.get(tid)
                if local is None:
                    outcome.ignored += 1
                    logger.warning(
                        "reconcile_unknown_id", batch_number=batch.batch_number, message_id=tid
                    )
                    continue
                local_ids.append(local)
            return local_ids

        persisted: set[str] = set()
        deduplicated: set[str] = set()
        failed_groups: dict[str, set[str]] = defaultdict(set)
        records: dict[str, FailureRecord] = {}
        sync_id: str | None = None

        if response is not None:
            sync_id = response.sync_id
            results = response.results
            persisted = set(resolve(results.persisted.message_ids))
            deduplicated = set(resolve(results.deduplicated.message_ids)) - persisted
            for detail in results.failed.details:
                for local in resolve([detail.message_id]):
                    if local in persisted or local in deduplicated:
                        logger.warning(
                            "reconcile_conflicting_verdict",
                            batch_number=batch.batch_number,
                            message_id=local,
                            resolved="success",
                        )
                        continue
                    if local in records:
                        continue
                    failed_groups[detail.response_tag].add(local)
                    records[local] = FailureRecord(local, detail.code, detail.error)

        unreported = sent - persisted - deduplicated - set(records)
        for local in sorted(unreported):
            failed_groups[UNREPORTED_TAG].add(local)
            records[local] = FailureRecord(local, "UNREPORTED", "not reported by server")
        for local in batch.missing_ids:
            failed_groups[MISSING_TAG].add(local)
            records[local] = FailureRecord(local, "MISSING", "message row not found")

        now = self._clock()
        try:
            with self._session_factory() as session, session.begin():
                repo = SyncStatusRepository(session, max_retries=self.max_retries)
                if persisted:
                    repo.mark_synced(sorted(persisted), PERSISTED, sync_id, now)
                if deduplicated:
                    repo.mark_synced(sorted(deduplicated), DEDUPLICATED, sync_id, now)
                for tag, ids in failed_groups.items():
                    repo.increment_retry_count(sorted(ids), tag)
        except SQLAlchemyError as exc:
            raise ReconciliationError(
                f"Could not record outcome of batch {batch.batch_number}: {exc}", cause=exc
            ).with_context(operation="reconcile", batch_number=batch.batch_number) from exc

        outcome.persisted = len(persisted)
        outcome.deduplicated = len(deduplicated)
        outcome.unreported = len(unreported)
        outcome.missing = len(batch.missing_ids)
        outcome.failed = len(records)
        outcome.failures = list(records.values())
        logger.info(
            "reconcile_applied",
            batch_number=batch.batch_number,
            sync_id=sync_id,
            persisted=outcome.persisted,
            deduplicated=outcome.deduplicated,
            failed=outcome.failed,
            unreported=outcome.unreported,
            missing=outcome.missing,
        )
        return outcome

    def fail_batch(self, batch: PushBatch, error: UsageSpineError) -> ReconcileOutcome:
        """Whole-batch failure: every selected message gets ``retry_count += 1``."""
        tag = failure_tag(error.code, error.message)
        try:
            with self._session_factory() as session, session.begin():
                repo = SyncStatusRepository(session, max_retries=self.max_retries)
                repo.increment_retry_count(batch.local_ids, tag)
        except SQLAlchemyError as exc:
            raise ReconciliationError(
                f"Could not record failure of batch {batch.batch_number}: {exc}", cause=exc
            ).with_context(operation="fail_batch", batch_number=batch.batch_number) from exc

        logger.info(
            "reconcile_batch_failed",
            batch_number=batch.batch_number,
            size=batch.size,
            code=error.code,
        )
        return ReconcileOutcome(
            failed=batch.size,
            missing=len(batch.missing_ids),
            failures=[FailureRecord(local, error.code, error.message) for local in batch.local_ids],
        )


__all__ = [
    "PERSISTED",
    "DEDUPLICATED",
    "UNREPORTED_TAG",
    "MISSING_TAG",
    "failure_tag",
    "FailureRecord",
    "ReconcileOutcome",
    "ResponseReconciler",
]
