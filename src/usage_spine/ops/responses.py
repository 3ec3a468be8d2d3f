"""
Typed response objects for operations.

Each dataclass represents the *output* of a single operation beyond the
generic :class:`OperationResult` envelope.  Responses carry only domain
data, no CLI formatting.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from usage_spine.core.timestamps import to_iso8601
from usage_spine.push.selector import BatchHistoryRow, FailureSample, PushStats


@dataclass(frozen=True, slots=True)
class PushStatusSummary:
    """Result payload for :func:`usage_spine.ops.status.get_push_status`."""

    stats: PushStats
    max_retries: int
    retry_warning_threshold: int
    endpoint: str
    token_configured: bool
    batch_size: int
    timeout_seconds: float
    recent_batches: list[BatchHistoryRow] = field(default_factory=list)
    failure_samples: list[FailureSample] = field(default_factory=list)

    @property
    def needs_force(self) -> bool:
        return self.stats.maxed_out > 0

    def to_dict(self) -> dict[str, Any]:
        stats = self.stats
        return {
            "total": stats.total,
            "synced": stats.synced,
            "unsynced": stats.unsynced,
            "eligible": stats.eligible,
            "maxed_out": stats.maxed_out,
            "success_rate": None if stats.success_rate is None else round(stats.success_rate, 1),
            "retry_histogram": {str(k): v for k, v in stats.retry_histogram.items()},
            "max_retries": self.max_retries,
            "endpoint": self.endpoint,
            "token_configured": self.token_configured,
            "batch_size": self.batch_size,
            "timeout_seconds": self.timeout_seconds,
            "recent_batches": [
                {**asdict(row), "last_synced_at": to_iso8601(row.last_synced_at)}
                for row in self.recent_batches
            ],
            "failure_samples": [asdict(sample) for sample in self.failure_samples],
        }


@dataclass(frozen=True, slots=True)
class ResetRetriesResult:
    """Result payload for :func:`usage_spine.ops.status.reset_retries`."""

    reset_count: int
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"reset_count": self.reset_count, "dry_run": self.dry_run}


@dataclass(frozen=True, slots=True)
class DatabaseInitResult:
    """Result payload for :func:`usage_spine.ops.database.initialize_database`."""

    tables: list[str]
    row_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"tables": self.tables, "row_counts": self.row_counts}
