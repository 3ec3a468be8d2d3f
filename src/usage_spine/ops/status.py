"""
Push status and retry-reset operations.

Both read the ``sync_status`` table through
:class:`~usage_spine.push.selector.SyncStatusRepository`.  Status reads
use a fresh session so only committed state is visible.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from usage_spine.core.errors import ConfigError, DatabaseError
from usage_spine.core.logging import get_logger
from usage_spine.ops.context import OperationContext
from usage_spine.ops.requests import PushStatusRequest, ResetRetriesRequest
from usage_spine.ops.responses import PushStatusSummary, ResetRetriesResult
from usage_spine.ops.result import OperationResult, start_timer
from usage_spine.push.selector import SyncStatusRepository

logger = get_logger(__name__)


def get_push_status(
    ctx: OperationContext,
    request: PushStatusRequest,
) -> OperationResult[PushStatusSummary]:
    """Summarize sync state: counts, retry histogram, and (verbose) history."""
    timer = start_timer()
    settings = ctx.settings

    try:
        with ctx.session_factory() as session:
            repo = SyncStatusRepository(session, max_retries=settings.max_retries)
            stats = repo.stats()
            recent = repo.recent_batches(settings.recent_history_limit) if request.verbose else []
            samples = (
                repo.sample_failures(settings.retry_warning_threshold, settings.sample_failures_limit)
                if request.verbose
                else []
            )
    except SQLAlchemyError as exc:
        logger.exception("push_status_failed", error=str(exc))
        err = DatabaseError(f"Failed to read push status: {exc}", cause=exc)
        return OperationResult.from_error(err, elapsed_ms=timer.elapsed_ms)

    try:
        token_configured = bool(ctx.get_credentials().get_token())
    except ConfigError as exc:
        logger.warning("credentials_unreadable", error=exc.message)
        token_configured = False

    summary = PushStatusSummary(
        stats=stats,
        max_retries=settings.max_retries,
        retry_warning_threshold=settings.retry_warning_threshold,
        endpoint=settings.push_url,
        token_configured=token_configured,
        batch_size=settings.batch_size,
        timeout_seconds=settings.timeout_seconds,
        recent_batches=recent,
        failure_samples=samples,
    )
    warnings = []
    if stats.maxed_out:
        warnings.append(
            f"{stats.maxed_out} message(s) have reached max retries ({settings.max_retries})"
        )
    return OperationResult.ok(summary, warnings=warnings, elapsed_ms=timer.elapsed_ms)


def reset_retries(
    ctx: OperationContext,
    request: ResetRetriesRequest,
) -> OperationResult[ResetRetriesResult]:
    """Clear retry state of unsynchronized messages.  Dry-run previews the count."""
    timer = start_timer()
    max_retries = ctx.settings.max_retries

    try:
        with ctx.session_factory() as session:
            repo = SyncStatusRepository(session, max_retries=max_retries)
            if ctx.dry_run:
                count = repo.count_unsynced(request.message_ids)
            else:
                with session.begin():
                    count = repo.reset_retry_count(request.message_ids)
    except SQLAlchemyError as exc:
        logger.exception("reset_retries_failed", error=str(exc))
        err = DatabaseError(f"Failed to reset retry counts: {exc}", cause=exc)
        return OperationResult.from_error(err, elapsed_ms=timer.elapsed_ms)

    logger.info("retry_counts_reset", count=count, dry_run=ctx.dry_run)
    return OperationResult.ok(
        ResetRetriesResult(reset_count=count, dry_run=ctx.dry_run), elapsed_ms=timer.elapsed_ms
    )
