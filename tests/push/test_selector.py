"""Tests for SyncStatusRepository — eligibility, statistics and bulk updates."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import text

from conftest import BASE_TIME, seed_messages, sync_rows
from usage_spine.push.selector import SyncStatusRepository


def _repo(session, max_retries: int = 5) -> SyncStatusRepository:
    return SyncStatusRepository(session, max_retries=max_retries)


class TestEligibility:
    """A row is eligible iff synced_at is NULL and retry_count < max_retries."""

    def test_fresh_rows_are_eligible(self, session_factory, seed):
        seed(4)
        with session_factory() as session:
            assert _repo(session).count_eligible() == 4

    def test_synced_rows_excluded(self, session_factory, seed):
        seed(3, synced=True)
        seed(2, start=3)
        with session_factory() as session:
            repo = _repo(session)
            assert repo.count_eligible() == 2
            assert repo.count_synced() == 3
            assert repo.count_unsynced() == 2

    def test_maxed_out_rows_excluded(self, session_factory, seed):
        seed(2, retry_count=5)
        seed(1, retry_count=4, start=2)
        with session_factory() as session:
            repo = _repo(session)
            assert repo.count_eligible() == 1
            assert repo.count_maxed_out() == 2

    def test_ceiling_is_configurable(self, session_factory, seed):
        seed(2, retry_count=3)
        with session_factory() as session:
            assert _repo(session, max_retries=3).count_eligible() == 0
            assert _repo(session, max_retries=4).count_eligible() == 2


class TestSelectBatch:
    def test_oldest_first_and_limited(self, session_factory, seed):
        ids = seed(7)
        with session_factory() as session:
            assert _repo(session).select_batch(3) == ids[:3]

    def test_skips_ineligible(self, session_factory, seed):
        seed(2, synced=True)
        seed(1, retry_count=5, start=2)
        eligible = seed(2, start=3)
        with session_factory() as session:
            assert _repo(session).select_batch(10) == eligible

    def test_empty_when_nothing_eligible(self, session_factory, seed):
        seed(3, synced=True)
        with session_factory() as session:
            assert _repo(session).select_batch(10) == []

    def test_selects_rows_whose_message_vanished(self, engine, session_factory, seed):
        seed(3)
        with engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            conn.exec_driver_sql("DELETE FROM messages WHERE id = 'msg-001'")
            conn.commit()
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        with session_factory() as session:
            assert "msg-001" in _repo(session).select_batch(10)


class TestStatistics:
    def test_stats_snapshot(self, session_factory, seed):
        seed(2, synced=True)
        seed(3, start=2)
        seed(1, retry_count=2, start=5)
        seed(2, retry_count=5, start=6)
        with session_factory() as session:
            stats = _repo(session).stats()
        assert stats.total == 8
        assert stats.synced == 2
        assert stats.unsynced == 6
        assert stats.eligible == 4
        assert stats.maxed_out == 2
        assert stats.retry_histogram == {0: 3, 2: 1, 5: 2}
        assert stats.success_rate == 25.0

    def test_success_rate_undefined_when_empty(self, session_factory):
        with session_factory() as session:
            assert _repo(session).stats().success_rate is None

    def test_recent_batches_grouped(self, session_factory, seed):
        ids = seed(5)
        with session_factory() as session, session.begin():
            repo = _repo(session)
            repo.mark_synced(ids[:3], "persisted", "sync-a", datetime(2025, 6, 2, 9, 0))
            repo.mark_synced(ids[3:], "deduplicated", "sync-b", datetime(2025, 6, 3, 9, 0))
        with session_factory() as session:
            rows = _repo(session).recent_batches()
        assert [(r.sync_batch_id, r.sync_response, r.count) for r in rows] == [
            ("sync-b", "deduplicated", 2),
            ("sync-a", "persisted", 3),
        ]

    def test_sample_failures_most_retried_first(self, session_factory, seed):
        ids = seed(3)
        with session_factory() as session, session.begin():
            repo = _repo(session)
            for _ in range(4):
                repo.increment_retry_count([ids[0]], "failed: DB_001 - boom")
            for _ in range(3):
                repo.increment_retry_count([ids[1]], "failed: VAL_001 - bad")
            repo.increment_retry_count([ids[2]], "failed: VAL_001 - bad")
        with session_factory() as session:
            samples = _repo(session).sample_failures(min_retries=3)
        assert [(s.message_id, s.retry_count) for s in samples] == [(ids[0], 4), (ids[1], 3)]


class TestMutations:
    def test_ensure_sync_rows_creates_missing_only(self, session_factory, seed):
        seed(2)
        seed(3, start=2, sync_rows=False)
        with session_factory() as session, session.begin():
            repo = _repo(session)
            assert repo.count_untracked() == 3
            assert repo.ensure_sync_rows() == 3
            assert repo.count_untracked() == 0
        with session_factory() as session, session.begin():
            assert _repo(session).ensure_sync_rows() == 0
        assert len(sync_rows(session_factory)) == 5

    def test_increment_tags_and_skips_synced(self, session_factory, seed):
        ids = seed(2)
        synced = seed(1, start=2, synced=True)
        with session_factory() as session, session.begin():
            changed = _repo(session).increment_retry_count(ids + synced, "failed: X - y")
        assert changed == 2
        rows = sync_rows(session_factory)
        assert rows[ids[0]].retry_count == 1
        assert rows[ids[0]].sync_response == "failed: X - y"
        assert rows[synced[0]].retry_count == 0

    def test_mark_synced_is_write_once(self, session_factory, seed):
        ids = seed(1)
        first = datetime(2025, 6, 2, 9, 0)
        with session_factory() as session, session.begin():
            assert _repo(session).mark_synced(ids, "persisted", "sync-1", first) == 1
        with session_factory() as session, session.begin():
            assert _repo(session).mark_synced(ids, "deduplicated", "sync-2", datetime(2025, 6, 3)) == 0
        row = sync_rows(session_factory)[ids[0]]
        assert row.synced_at == first
        assert row.sync_batch_id == "sync-1"
        assert row.sync_response == "persisted"

    def test_reset_all_unsynced(self, session_factory, seed):
        maxed = seed(2, retry_count=5)
        synced = seed(1, start=2, synced=True)
        with session_factory() as session, session.begin():
            assert _repo(session).reset_retry_count() == 2
        rows = sync_rows(session_factory)
        assert all(rows[i].retry_count == 0 and rows[i].sync_response is None for i in maxed)
        assert rows[synced[0]].synced_at == BASE_TIME

    def test_reset_selected_ids(self, session_factory, seed):
        ids = seed(3, retry_count=5)
        with session_factory() as session, session.begin():
            repo = _repo(session)
            assert repo.count_eligible_after_reset([ids[0]]) == 1
            assert repo.reset_retry_count([ids[0]]) == 1
        rows = sync_rows(session_factory)
        assert rows[ids[0]].retry_count == 0
        assert rows[ids[1]].retry_count == 5

    def test_large_id_lists_are_chunked(self, session_factory, seed):
        ids = seed(1200)
        with session_factory() as session, session.begin():
            assert _repo(session).increment_retry_count(ids) == 1200
        with session_factory() as session:
            count = session.execute(text("SELECT COUNT(*) FROM sync_status WHERE retry_count = 1")).scalar()
        assert count == 1200
