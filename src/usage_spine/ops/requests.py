"""
Typed request objects for operations.

Each dataclass represents the *input* contract for a single operation
function.  Requests carry only validated, transport-agnostic data: no
typer params, no terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RunPushRequest:
    """Request for :func:`usage_spine.ops.push.run_push`.

    Attributes:
        batch_size: Messages per batch (``None`` → settings).
        dry_run: Report what would be pushed; no network, no writes.
        force: Reset retry state of unsynchronized messages first.
        force_ids: Limit the force reset to these local message ids.
        api_url: Override the service base URL for this run.
    """

    batch_size: int | None = None
    dry_run: bool = False
    force: bool = False
    force_ids: tuple[str, ...] | None = None
    api_url: str | None = None


@dataclass(frozen=True, slots=True)
class PushStatusRequest:
    """Request for :func:`usage_spine.ops.status.get_push_status`."""

    verbose: bool = False


@dataclass(frozen=True, slots=True)
class ResetRetriesRequest:
    """Request for :func:`usage_spine.ops.status.reset_retries`."""

    message_ids: tuple[str, ...] | None = None  # ``None`` → every unsynchronized message
