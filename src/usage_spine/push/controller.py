"""
Push session controller.

Drives one push session from credential check to final statistics:

    IDLE → ANALYZING_QUEUE → EMPTY → DONE
    IDLE → ANALYZING_QUEUE → VERIFYING_AUTH → BATCH_LOOP → DONE
    IDLE → DRY_RUN → DONE

The queue is analyzed before the health check so that an empty queue
costs no network call; the health check still precedes the first batch.
``BATCH_LOOP`` repeats *select → build → transmit → reconcile* until the
eligible set is empty, a fatal error occurs, or the iteration cap is
reached.  The controller never raises for an expected failure: it
records the fatal error on the :class:`PushReport` and stops.

Manifesto:
    - **Every transmitted message is accounted for:** each batch either
      reconciles or is failed as a whole; nothing silently stays in flight
    - **Fatal is decided by type:** auth and storage failures abort and
      leave the batch in flight untouched; transport failures fail the batch
    - **Always terminates:** at most ``ceil(eligible * max_retries /
      batch_size) + max_retries`` iterations
    - **No terminal knowledge:** progress is reported through ``on_batch``

Tags:
    usage-spine, push, controller, state-machine, batching

Doc-Types:
    - API Reference
    - Architecture
"""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from usage_spine.auth.credentials import CredentialProvider
from usage_spine.core.errors import (
    CredentialMissingError,
    DatabaseError,
    UsageSpineError,
    ValidationError,
    is_connectivity_error,
    is_fatal,
)
from usage_spine.core.logging import LogContext, get_logger
from usage_spine.core.namespace import NamespaceTransformer
from usage_spine.push.builder import BatchBuilder, PushBatch
from usage_spine.push.reconciler import FailureRecord, ReconcileOutcome, ResponseReconciler
from usage_spine.push.selector import PushStats, SyncStatusRepository
from usage_spine.push.transport import PushTransport

logger = get_logger(__name__)


class PushState(str, Enum):
    IDLE = "idle"
    VERIFYING_AUTH = "verifying_auth"
    ANALYZING_QUEUE = "analyzing_queue"
    DRY_RUN = "dry_run"
    EMPTY = "empty"
    BATCH_LOOP = "batch_loop"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class PushOptions:
    """Per-session knobs (CLI flags override settings here)."""

    batch_size: int = 1000
    max_retries: int = 5
    auth_recheck_interval: int = 10
    max_failed_shown: int = 5
    dry_run: bool = False
    force: bool = False
    force_ids: tuple[str, ...] | None = None

    def validate(self) -> None:
        if self.batch_size < 1:
            raise ValidationError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_retries < 1:
            raise ValidationError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.auth_recheck_interval < 1:
            raise ValidationError(
                f"auth_recheck_interval must be >= 1, got {self.auth_recheck_interval}"
            )


@dataclass(slots=True)
class BatchResult:
    """What happened to one batch; passed to ``on_batch``."""

    batch_number: int
    size: int
    skipped: bool = False
    persisted: int = 0
    deduplicated: int = 0
    failed: int = 0
    sync_id: str | None = None
    error: UsageSpineError | None = None
    model_counts: dict[str, int] = field(default_factory=dict)
    role_counts: dict[str, int] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def pushed(self) -> int:
        return self.persisted + self.deduplicated


@dataclass(slots=True)
class PushReport:
    """Outcome of a push session."""

    session_id: str
    state: PushState = PushState.IDLE
    dry_run: bool = False
    batches_sent: int = 0
    batches_failed: int = 0
    batches_skipped: int = 0
    persisted: int = 0
    deduplicated: int = 0
    failed: int = 0
    failures: list[FailureRecord] = field(default_factory=list)
    eligible_before: int = 0
    eligible_after: int = 0
    planned_batches: int = 0
    force_reset_count: int = 0
    maxed_out: int = 0
    stopped_early: bool = False
    fatal_error: UsageSpineError | None = None
    stats_before: PushStats | None = None
    stats_after: PushStats | None = None
    duration_ms: float = 0.0

    @property
    def pushed(self) -> int:
        return self.persisted + self.deduplicated

    @property
    def succeeded(self) -> bool:
        return self.fatal_error is None

    @property
    def empty_reason(self) -> str | None:
        """``"all_synced"`` or ``"maxed_out"`` when the queue was empty."""
        if self.state is not PushState.EMPTY or self.fatal_error is not None:
            return None
        return "maxed_out" if self.maxed_out else "all_synced"

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "dry_run": self.dry_run,
            "batches_sent": self.batches_sent,
            "batches_failed": self.batches_failed,
            "batches_skipped": self.batches_skipped,
            "pushed": self.pushed,
            "persisted": self.persisted,
            "deduplicated": self.deduplicated,
            "failed": self.failed,
            "eligible_before": self.eligible_before,
            "eligible_after": self.eligible_after,
            "planned_batches": self.planned_batches,
            "force_reset_count": self.force_reset_count,
            "maxed_out": self.maxed_out,
            "stopped_early": self.stopped_early,
            "empty_reason": self.empty_reason,
            "failures": [
                {"message_id": f.message_id, "code": f.code, "message": f.message}
                for f in self.failures
            ],
            "fatal_error": self.fatal_error.to_dict() if self.fatal_error else None,
            "duration_ms": round(self.duration_ms, 2),
        }


class PushSessionController:
    """Runs one push session.

    Args:
        session_factory: Produces SQLAlchemy sessions (one per unit of work).
        transport: Authenticated HTTP client.
        credentials: Source of the token and server-side user id.
        options: Batch size, retry ceiling, recheck cadence, mode flags.
        on_batch: Optional observer called after every batch.

    Example:
        >>> controller = PushSessionController(
        ...     session_factory=factory, transport=transport,
        ...     credentials=creds, options=PushOptions(batch_size=500),
        ... )
        >>> report = controller.run()
        >>> report.pushed
        1234
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        transport: PushTransport,
        credentials: CredentialProvider,
        options: PushOptions | None = None,
        on_batch: Callable[[BatchResult], None] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._transport = transport
        self._credentials = credentials
        self.options = options or PushOptions()
        self._on_batch = on_batch
        self.state = PushState.IDLE
        self.session_id = uuid.uuid4().hex[:12]

    # ------------------------------------------------------------------ #
    # Plumbing
    # ------------------------------------------------------------------ #

    def _set_state(self, state: PushState) -> None:
        logger.debug("push_state_changed", from_state=self.state.value, to_state=state.value)
        self.state = state

    @contextmanager
    def _unit(self, *, write: bool = True) -> Iterator[SyncStatusRepository]:
        """One session (and, for writes, one transaction) as a repository."""
        try:
            with self._session_factory() as session:
                if write:
                    with session.begin():
                        yield SyncStatusRepository(session, max_retries=self.options.max_retries)
                else:
                    yield SyncStatusRepository(session, max_retries=self.options.max_retries)
        except SQLAlchemyError as exc:
            raise DatabaseError(f"Local store failure: {exc}", cause=exc).with_context(
                operation=self.state.value
            ) from exc

    def _require_credential(self) -> str:
        creds = self._credentials
        user_id = creds.get_user_id()
        if not creds.is_authenticated() or not creds.get_token() or not user_id:
            raise CredentialMissingError("Not logged in: no API token or user id available")
        return user_id

    def _verify_auth(self, *, batch_number: int | None = None) -> None:
        try:
            health = self._transport.health_check()
        except UsageSpineError as exc:
            event = "auth_recheck_failed" if batch_number else "auth_verify_failed"
            logger.error(event, batch_number=batch_number, code=exc.code, error=exc.message)
            raise
        logger.debug(
            "auth_verified",
            batch_number=batch_number,
            server_user=health.user.id if health.user else None,
        )

    # ------------------------------------------------------------------ #
    # Session
    # ------------------------------------------------------------------ #

    def run(self) -> PushReport:
        """Run the session to completion and return its report."""
        opts = self.options
        report = PushReport(session_id=self.session_id, dry_run=opts.dry_run)
        started = time.perf_counter()

        with LogContext(push_session_id=self.session_id):
            try:
                opts.validate()
                user_id = self._require_credential()
                if opts.dry_run:
                    self._dry_run(report)
                else:
                    self._set_state(PushState.ANALYZING_QUEUE)
                    self._analyze(report)
                    if report.eligible_before == 0:
                        self._set_state(PushState.EMPTY)
                    else:
                        self._set_state(PushState.VERIFYING_AUTH)
                        self._verify_auth()
                        self._set_state(PushState.BATCH_LOOP)
                        self._batch_loop(report, user_id)
            except UsageSpineError as exc:
                report.fatal_error = exc
                logger.error("push_session_aborted", state=self.state.value, **exc.to_dict())

            if not opts.dry_run and not isinstance(report.fatal_error, DatabaseError) and report.stats_before:
                try:
                    with self._unit(write=False) as repo:
                        report.stats_after = repo.stats()
                    report.eligible_after = report.stats_after.eligible
                except DatabaseError as exc:
                    report.fatal_error = report.fatal_error or exc

            report.state = self.state
            self._set_state(PushState.DONE)
            report.duration_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "push_session_finished",
                final_state=report.state.value,
                batches_sent=report.batches_sent,
                batches_failed=report.batches_failed,
                pushed=report.pushed,
                failed=report.failed,
                stopped_early=report.stopped_early,
                fatal=report.fatal_error.code if report.fatal_error else None,
            )
        return report

    def _dry_run(self, report: PushReport) -> None:
        opts = self.options
        self._set_state(PushState.DRY_RUN)
        with self._unit(write=False) as repo:
            stats = repo.stats()
            untracked = repo.count_untracked()
            if opts.force:
                eligible = repo.count_eligible_after_reset(opts.force_ids)
                report.force_reset_count = repo.count_unsynced(opts.force_ids)
            else:
                eligible = stats.eligible
        report.stats_before = stats
        report.maxed_out = stats.maxed_out
        report.eligible_before = eligible + untracked
        report.eligible_after = report.eligible_before
        report.planned_batches = math.ceil(report.eligible_before / opts.batch_size)
        logger.info(
            "push_dry_run",
            eligible=report.eligible_before,
            planned_batches=report.planned_batches,
            force=opts.force,
        )

    def _analyze(self, report: PushReport) -> None:
        opts = self.options
        with self._unit() as repo:
            created = repo.ensure_sync_rows()
            if created:
                logger.info("sync_rows_created", count=created)
            report.stats_before = repo.stats()
            if opts.force:
                report.force_reset_count = repo.reset_retry_count(opts.force_ids)
                logger.info("push_force_reset", count=report.force_reset_count)
        if opts.force:
            with self._unit(write=False) as repo:
                report.stats_before = repo.stats()
        stats = report.stats_before
        report.eligible_before = stats.eligible
        report.maxed_out = stats.maxed_out
        report.planned_batches = math.ceil(stats.eligible / opts.batch_size)
        logger.info(
            "push_queue_analyzed",
            total=stats.total,
            unsynced=stats.unsynced,
            eligible=stats.eligible,
            maxed_out=stats.maxed_out,
        )

    def _batch_loop(self, report: PushReport, user_id: str) -> None:
        opts = self.options
        builder = BatchBuilder(NamespaceTransformer(user_id))
        reconciler = ResponseReconciler(self._session_factory, max_retries=opts.max_retries)
        cap = math.ceil(report.eligible_before * opts.max_retries / opts.batch_size) + opts.max_retries
        batch_number = 0

        while True:
            if batch_number >= cap:
                report.stopped_early = True
                logger.warning("push_iteration_cap_reached", cap=cap)
                break
            batch_number += 1

            if batch_number > 1 and (batch_number - 1) % opts.auth_recheck_interval == 0:
                try:
                    self._verify_auth(batch_number=batch_number)
                except UsageSpineError:
                    report.stopped_early = True
                    raise

            with self._unit(write=False) as repo:
                ids = repo.select_batch(opts.batch_size)
                if not ids:
                    break
                batch = builder.build(repo.session, batch_number, ids)

            result = self._send_batch(batch, reconciler, report)
            if self._on_batch is not None:
                self._on_batch(result)
            if result.error is not None and is_connectivity_error(result.error):
                report.stopped_early = True
                logger.warning("push_stopped_early", batch_number=batch_number, code=result.error.code)
                break

    def _send_batch(
        self, batch: PushBatch, reconciler: ResponseReconciler, report: PushReport
    ) -> BatchResult:
        started = time.perf_counter()
        result = BatchResult(
            batch_number=batch.batch_number,
            size=batch.size,
            model_counts=batch.model_counts,
            role_counts=batch.role_counts,
        )
        logger.info(
            "push_batch_sending",
            batch_number=batch.batch_number,
            size=batch.size,
            transmitted=batch.transmitted,
        )

        outcome: ReconcileOutcome
        if not batch.transmitted:
            # Every selected row vanished; nothing goes on the wire.
            outcome = reconciler.apply(batch, None)
            result.skipped = True
            report.batches_skipped += 1
            logger.warning(
                "push_batch_skipped",
                batch_number=batch.batch_number,
                missing=len(batch.missing_ids),
            )
            return self._account(result, outcome, report, started)

        try:
            response = self._transport.push(batch.request, batch_number=batch.batch_number)
        except UsageSpineError as exc:
            if is_fatal(exc):
                report.stopped_early = True
                logger.error(
                    "push_batch_aborted",
                    batch_number=batch.batch_number,
                    size=batch.size,
                    code=exc.code,
                    error=exc.message,
                )
                raise
            outcome = reconciler.fail_batch(batch, exc)
            result.error = exc
            report.batches_failed += 1
            logger.warning(
                "push_batch_failed",
                batch_number=batch.batch_number,
                size=batch.size,
                code=exc.code,
                error=exc.message,
                retryable=exc.retryable,
            )
        else:
            outcome = reconciler.apply(batch, response)
            result.sync_id = response.sync_id
            report.batches_sent += 1
            logger.info(
                "push_batch_sent",
                batch_number=batch.batch_number,
                sync_id=result.sync_id,
                persisted=outcome.persisted,
                deduplicated=outcome.deduplicated,
                failed=outcome.failed,
            )
        return self._account(result, outcome, report, started)

    def _account(
        self, result: BatchResult, outcome: ReconcileOutcome, report: PushReport, started: float
    ) -> BatchResult:
        result.persisted = outcome.persisted
        result.deduplicated = outcome.deduplicated
        result.failed = outcome.failed
        result.duration_ms = (time.perf_counter() - started) * 1000

        report.persisted += outcome.persisted
        report.deduplicated += outcome.deduplicated
        report.failed += outcome.failed
        room = self.options.max_failed_shown - len(report.failures)
        if room > 0:
            report.failures.extend(outcome.failures[:room])
        return result


__all__ = [
    "PushState",
    "PushOptions",
    "BatchResult",
    "PushReport",
    "PushSessionController",
]
