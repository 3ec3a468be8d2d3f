"""
Push operation: run one push session against the configured service.

Wraps :class:`~usage_spine.push.controller.PushSessionController` with the
settings, credentials and transport from an :class:`OperationContext`.
The returned result carries the :class:`PushReport` whether or not the
session hit a fatal error.
"""

from __future__ import annotations

from collections.abc import Callable

import httpx

from usage_spine.core.errors import UsageSpineError
from usage_spine.core.logging import get_logger
from usage_spine.ops.context import OperationContext
from usage_spine.ops.requests import RunPushRequest
from usage_spine.ops.result import OperationResult, start_timer
from usage_spine.push.controller import BatchResult, PushOptions, PushReport, PushSessionController
from usage_spine.push.transport import PushTransport

logger = get_logger(__name__)


def _options(ctx: OperationContext, request: RunPushRequest) -> PushOptions:
    settings = ctx.settings
    return PushOptions(
        batch_size=request.batch_size if request.batch_size is not None else settings.batch_size,
        max_retries=settings.max_retries,
        auth_recheck_interval=settings.auth_recheck_interval,
        max_failed_shown=settings.max_failed_shown,
        dry_run=request.dry_run or ctx.dry_run,
        force=request.force,
        force_ids=request.force_ids,
    )


def _warnings(report: PushReport) -> list[str]:
    warnings = []
    if report.batches_failed:
        warnings.append(f"{report.batches_failed} batch(es) failed and will be retried on the next push")
    if report.stopped_early and report.fatal_error is None:
        warnings.append("Push stopped early; remaining messages stay queued")
    if report.empty_reason == "maxed_out":
        warnings.append(
            f"{report.maxed_out} message(s) reached the retry limit; use --force to retry them"
        )
    return warnings


def run_push(
    ctx: OperationContext,
    request: RunPushRequest,
    *,
    on_batch: Callable[[BatchResult], None] | None = None,
    http_transport: httpx.BaseTransport | None = None,
) -> OperationResult[PushReport]:
    """Run a push session.

    Exit semantics for callers: ``success`` is ``False`` only for fatal
    conditions (missing credential, rejected credential, unreachable
    service at session start, storage failure).  Partial batch failures
    are successes with warnings.
    """
    timer = start_timer()
    settings = ctx.settings

    try:
        credentials = ctx.get_credentials()
        transport = PushTransport(
            request.api_url or settings.api_base_url,
            credentials,
            push_path=settings.push_path,
            health_path=settings.health_path,
            timeout=settings.timeout_seconds,
            transport=http_transport,
        )
    except UsageSpineError as exc:
        logger.error("push_setup_failed", **exc.to_dict())
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)

    with transport:
        controller = PushSessionController(
            session_factory=ctx.session_factory,
            transport=transport,
            credentials=credentials,
            options=_options(ctx, request),
            on_batch=on_batch,
        )
        report = controller.run()

    if report.fatal_error is not None:
        return OperationResult.from_error(report.fatal_error, data=report, elapsed_ms=timer.elapsed_ms)
    return OperationResult.ok(
        report,
        warnings=_warnings(report),
        elapsed_ms=timer.elapsed_ms,
        metadata={"session_id": report.session_id},
    )
