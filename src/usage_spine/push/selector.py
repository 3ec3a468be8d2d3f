"""Eligibility selector and statistics projection over ``sync_status``.

A message is *eligible* for push iff ``synced_at IS NULL AND retry_count
< max_retries``.  Everything in this module reads or writes through that
one predicate.

The repository is bound to a caller-owned session and never commits;
callers wrap each unit of work in ``session.begin()``.

Tags:
    usage-spine, repository, sync-status, selection, statistics

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from sqlalchemy import ColumnElement, and_, exists, func, insert, or_, select, update
from sqlalchemy.orm import Session

from usage_spine.core.orm.tables import MessageTable, SyncStatusTable

# Keeps IN (...) lists well under SQLite's bound-parameter limit.
_CHUNK = 500


def _chunks(ids: Iterable[str], size: int = _CHUNK) -> Iterator[list[str]]:
    chunk: list[str] = []
    for item in ids:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


@dataclass(frozen=True, slots=True)
class PushStats:
    """Snapshot of the sync-status table."""

    total: int = 0
    synced: int = 0
    unsynced: int = 0
    eligible: int = 0
    maxed_out: int = 0
    retry_histogram: dict[int, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float | None:
        if not self.total:
            return None
        return self.synced / self.total * 100


@dataclass(frozen=True, slots=True)
class BatchHistoryRow:
    sync_batch_id: str | None
    sync_response: str | None
    count: int
    last_synced_at: datetime.datetime | None


@dataclass(frozen=True, slots=True)
class FailureSample:
    message_id: str
    retry_count: int
    sync_response: str | None


class SyncStatusRepository:
    """Reads and bulk-updates ``sync_status`` rows.

    Args:
        session: Open session; the caller controls the transaction.
        max_retries: Retry ceiling defining eligibility.
    """

    def __init__(self, session: Session, *, max_retries: int = 5) -> None:
        self.session = session
        self.max_retries = max_retries

    # -- predicates ------------------------------------------------------------

    def _eligible(self) -> ColumnElement[bool]:
        return and_(
            SyncStatusTable.synced_at.is_(None),
            SyncStatusTable.retry_count < self.max_retries,
        )

    def _unsynced(self) -> ColumnElement[bool]:
        return SyncStatusTable.synced_at.is_(None)

    def _count(self, *criteria: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(SyncStatusTable).where(*criteria)
        return self.session.scalar(stmt) or 0

    # -- selection -------------------------------------------------------------

    def select_batch(self, batch_size: int) -> list[str]:
        """Up to *batch_size* eligible message ids, oldest message first.

        Rows whose message has vanished are still selected so they can be
        failed out of the eligible set.
        """
        stmt = (
            select(SyncStatusTable.message_id)
            .outerjoin(MessageTable, MessageTable.id == SyncStatusTable.message_id)
            .where(self._eligible())
            .order_by(MessageTable.timestamp.asc(), SyncStatusTable.message_id.asc())
            .limit(batch_size)
        )
        return list(self.session.scalars(stmt))

    # -- counts ----------------------------------------------------------------

    def count_total(self) -> int:
        return self._count()

    def count_synced(self) -> int:
        return self._count(SyncStatusTable.synced_at.is_not(None))

    def count_unsynced(self, message_ids: Iterable[str] | None = None) -> int:
        if message_ids is None:
            return self._count(self._unsynced())
        return sum(
            self._count(self._unsynced(), SyncStatusTable.message_id.in_(chunk))
            for chunk in _chunks(message_ids)
        )

    def count_eligible(self) -> int:
        return self._count(self._eligible())

    def count_maxed_out(self, message_ids: Iterable[str] | None = None) -> int:
        criteria = [self._unsynced(), SyncStatusTable.retry_count >= self.max_retries]
        if message_ids is None:
            return self._count(*criteria)
        return sum(
            self._count(*criteria, SyncStatusTable.message_id.in_(chunk))
            for chunk in _chunks(message_ids)
        )

    def count_untracked(self) -> int:
        """Messages that have no sync-status row yet."""
        stmt = (
            select(func.count())
            .select_from(MessageTable)
            .where(~exists().where(SyncStatusTable.message_id == MessageTable.id))
        )
        return self.session.scalar(stmt) or 0

    def count_eligible_after_reset(self, message_ids: Iterable[str] | None = None) -> int:
        """How many rows a force reset would make eligible (no mutation)."""
        if message_ids is None:
            return self.count_unsynced()
        ids = list(message_ids)
        return self._count(
            self._unsynced(),
            or_(SyncStatusTable.retry_count < self.max_retries, SyncStatusTable.message_id.in_(ids)),
        )

    def retry_histogram(self) -> dict[int, int]:
        """Unsynchronized rows grouped by retry count, ascending."""
        stmt = (
            select(SyncStatusTable.retry_count, func.count())
            .where(self._unsynced())
            .group_by(SyncStatusTable.retry_count)
            .order_by(SyncStatusTable.retry_count)
        )
        return {retry: count for retry, count in self.session.execute(stmt)}

    def stats(self) -> PushStats:
        return PushStats(
            total=self.count_total(),
            synced=self.count_synced(),
            unsynced=self.count_unsynced(),
            eligible=self.count_eligible(),
            maxed_out=self.count_maxed_out(),
            retry_histogram=self.retry_histogram(),
        )

    # -- history ---------------------------------------------------------------

    def recent_batches(self, limit: int = 10) -> list[BatchHistoryRow]:
        """Synced rows grouped by ``(sync_batch_id, sync_response)``, newest first."""
        last = func.max(SyncStatusTable.synced_at)
        stmt = (
            select(SyncStatusTable.sync_batch_id, SyncStatusTable.sync_response, func.count(), last)
            .where(SyncStatusTable.synced_at.is_not(None))
            .group_by(SyncStatusTable.sync_batch_id, SyncStatusTable.sync_response)
            .order_by(last.desc())
            .limit(limit)
        )
        return [BatchHistoryRow(*row) for row in self.session.execute(stmt)]

    def sample_failures(self, min_retries: int = 3, limit: int = 5) -> list[FailureSample]:
        """Unsynchronized rows with a recorded outcome, most-retried first."""
        stmt = (
            select(SyncStatusTable.message_id, SyncStatusTable.retry_count, SyncStatusTable.sync_response)
            .where(
                self._unsynced(),
                SyncStatusTable.sync_response.is_not(None),
                SyncStatusTable.retry_count >= min_retries,
            )
            .order_by(SyncStatusTable.retry_count.desc(), SyncStatusTable.message_id)
            .limit(limit)
        )
        return [FailureSample(*row) for row in self.session.execute(stmt)]

    # -- mutations -------------------------------------------------------------

    def ensure_sync_rows(self) -> int:
        """Create a sync-status row for every message lacking one.  Returns rows created."""
        missing = select(MessageTable.id).where(
            ~exists().where(SyncStatusTable.message_id == MessageTable.id)
        )
        result = self.session.execute(
            insert(SyncStatusTable).from_select(["message_id"], missing)
        )
        return max(result.rowcount or 0, 0)

    def reset_retry_count(self, message_ids: Iterable[str] | None = None) -> int:
        """Zero ``retry_count`` and clear ``sync_response`` on unsynchronized rows."""
        values = {"retry_count": 0, "sync_response": None}
        if message_ids is None:
            return self._update([self._unsynced()], values)
        return sum(
            self._update([self._unsynced(), SyncStatusTable.message_id.in_(chunk)], values)
            for chunk in _chunks(message_ids)
        )

    def increment_retry_count(self, message_ids: Iterable[str], response: str | None = None) -> int:
        """Bump ``retry_count`` by one on unsynchronized rows, optionally tagging the outcome."""
        values: dict[str, object] = {"retry_count": SyncStatusTable.retry_count + 1}
        if response is not None:
            values["sync_response"] = response
        return sum(
            self._update([self._unsynced(), SyncStatusTable.message_id.in_(chunk)], values)
            for chunk in _chunks(message_ids)
        )

    def mark_synced(
        self,
        message_ids: Iterable[str],
        outcome: str,
        batch_id: str | None,
        synced_at: datetime.datetime,
    ) -> int:
        """Record a terminal success.  Rows already synced are left untouched."""
        values = {"synced_at": synced_at, "sync_response": outcome, "sync_batch_id": batch_id}
        return sum(
            self._update([self._unsynced(), SyncStatusTable.message_id.in_(chunk)], values)
            for chunk in _chunks(message_ids)
        )

    def _update(self, criteria: list[ColumnElement[bool]], values: dict[str, object]) -> int:
        stmt = (
            update(SyncStatusTable)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount or 0


__all__ = [
    "PushStats",
    "BatchHistoryRow",
    "FailureSample",
    "SyncStatusRepository",
]
