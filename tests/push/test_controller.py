"""Tests for PushSessionController — end-to-end push sessions against a fake server."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import API_BASE, SERVER_USER_ID, TOKEN, all_persisted, sync_rows
from usage_spine.auth.credentials import StaticCredentialProvider
from usage_spine.core.errors import AuthenticationError, CredentialMissingError, ValidationError
from usage_spine.core.namespace import transform_id
from usage_spine.push.controller import (
    BatchResult,
    PushOptions,
    PushSessionController,
    PushState,
)
from usage_spine.push.transport import PushTransport


def _run(session_factory, push_transport, credentials, *, on_batch=None, **options):
    controller = PushSessionController(
        session_factory=session_factory,
        transport=push_transport,
        credentials=credentials,
        options=PushOptions(**options),
        on_batch=on_batch,
    )
    return controller.run()


class _RevocableCredentials:
    """Logged in until ``revoke()`` drops the token."""

    def __init__(self) -> None:
        self.token: str | None = TOKEN

    def revoke(self) -> None:
        self.token = None

    def is_authenticated(self) -> bool:
        return self.token is not None

    def get_token(self) -> str | None:
        return self.token

    def get_user_id(self) -> str | None:
        return SERVER_USER_ID

    def get_email(self) -> str | None:
        return None


def _partial(persist_count: int, code: str = "VAL_001", error: str = "invalid tokens"):
    """Persist the first *persist_count* messages of the body, fail the rest."""

    def handler(body):
        ids = [m["id"] for m in body["messages"]]
        return httpx.Response(
            200,
            json={
                "syncId": "sync-partial",
                "results": {
                    "persisted": {"count": persist_count, "messageIds": ids[:persist_count]},
                    "deduplicated": {"count": 0, "messageIds": []},
                    "failed": {
                        "count": len(ids) - persist_count,
                        "details": [
                            {"messageId": mid, "code": code, "error": error} for mid in ids[persist_count:]
                        ],
                    },
                },
            },
        )

    return handler


class TestFullSync:
    def test_two_batches_push_everything(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(15)
        report = _run(session_factory, push_transport, credentials, batch_size=10)

        assert report.succeeded
        assert report.state is PushState.BATCH_LOOP
        assert report.batches_sent == 2
        assert report.pushed == 15
        assert report.planned_batches == 2
        assert report.eligible_before == 15
        assert report.eligible_after == 0
        assert fake_server.health_calls == 1
        assert [len(b["messages"]) for b in fake_server.push_bodies] == [10, 5]

        rows = sync_rows(session_factory)
        assert all(rows[i].synced_at is not None and rows[i].sync_response == "persisted" for i in ids)
        assert report.stats_after.synced == 15

    def test_oldest_messages_go_first(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(3)
        _run(session_factory, push_transport, credentials, batch_size=2)
        first = [m["id"] for m in fake_server.push_bodies[0]["messages"]]
        assert first == [transform_id(i, SERVER_USER_ID) for i in ids[:2]]

    def test_wire_user_is_authenticated_user(self, session_factory, seed, fake_server, push_transport, credentials):
        seed(1)
        _run(session_factory, push_transport, credentials)
        body = fake_server.push_bodies[0]
        assert body["messages"][0]["userId"] == SERVER_USER_ID
        assert all(s["userId"] == SERVER_USER_ID for s in body["entities"]["sessions"].values())

    def test_untracked_messages_are_picked_up(self, session_factory, seed, push_transport, credentials):
        seed(4, sync_rows=False)
        report = _run(session_factory, push_transport, credentials)
        assert report.pushed == 4
        assert len(sync_rows(session_factory)) == 4

    def test_on_batch_observer(self, session_factory, seed, push_transport, credentials):
        seed(5)
        seen: list[BatchResult] = []
        _run(session_factory, push_transport, credentials, batch_size=2, on_batch=seen.append)
        assert [(r.batch_number, r.size, r.persisted) for r in seen] == [(1, 2, 2), (2, 2, 2), (3, 1, 1)]
        assert all(r.ok for r in seen)
        assert seen[0].model_counts == {"claude-sonnet": 2}


class TestPartialFailure:
    def test_failed_records_get_retry_bump(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(5)
        fake_server.push_responses = [_partial(3)]

        report = _run(session_factory, push_transport, credentials, batch_size=5, max_retries=1)

        assert report.succeeded
        assert report.persisted == 3
        assert report.failed == 2
        rows = sync_rows(session_factory)
        assert all(rows[i].synced_at is not None for i in ids[:3])
        for local_id in ids[3:]:
            assert rows[local_id].synced_at is None
            assert rows[local_id].retry_count == 1
            assert rows[local_id].sync_response == "failed: VAL_001 - invalid tokens"
        assert {f.message_id for f in report.failures} == set(ids[3:])

    def test_failed_records_retried_within_session(self, session_factory, seed, fake_server, push_transport, credentials):
        seed(4)
        fake_server.push_responses = [_partial(2)]
        report = _run(session_factory, push_transport, credentials, batch_size=4)
        assert report.batches_sent == 2
        assert report.pushed == 4
        assert report.eligible_after == 0


class TestEmptyQueue:
    def test_all_maxed_out_makes_no_network_call(self, session_factory, seed, fake_server, push_transport, credentials):
        seed(5, retry_count=5)
        report = _run(session_factory, push_transport, credentials)

        assert fake_server.requests == []
        assert report.state is PushState.EMPTY
        assert report.empty_reason == "maxed_out"
        assert report.maxed_out == 5
        assert report.succeeded

    def test_all_synced(self, session_factory, seed, fake_server, push_transport, credentials):
        seed(2, synced=True)
        report = _run(session_factory, push_transport, credentials)
        assert fake_server.requests == []
        assert report.empty_reason == "all_synced"

    def test_empty_store(self, session_factory, fake_server, push_transport, credentials):
        report = _run(session_factory, push_transport, credentials)
        assert report.empty_reason == "all_synced"
        assert report.batches_sent == 0


class TestForce:
    def test_force_resets_and_pushes(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(3, retry_count=5)
        report = _run(session_factory, push_transport, credentials, force=True)

        assert report.force_reset_count == 3
        assert report.eligible_before == 3
        assert report.pushed == 3
        rows = sync_rows(session_factory)
        assert all(rows[i].synced_at is not None for i in ids)

    def test_force_specific_ids(self, session_factory, seed, push_transport, credentials):
        ids = seed(3, retry_count=5)
        report = _run(session_factory, push_transport, credentials, force=True, force_ids=(ids[1],))
        assert report.force_reset_count == 1
        assert report.pushed == 1
        rows = sync_rows(session_factory)
        assert rows[ids[1]].synced_at is not None
        assert rows[ids[0]].retry_count == 5

    def test_force_never_touches_synced_rows(self, session_factory, seed, push_transport, credentials):
        synced = seed(2, synced=True)
        seed(1, retry_count=5, start=2)
        report = _run(session_factory, push_transport, credentials, force=True)
        assert report.force_reset_count == 1
        rows = sync_rows(session_factory)
        assert all(rows[i].sync_response == "persisted" for i in synced)


class TestConnectivity:
    def test_network_loss_stops_session(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(25)
        fake_server.push_responses = [
            lambda body: fake_server.default_push(body),
            httpx.ConnectError("connection reset"),
        ]

        report = _run(session_factory, push_transport, credentials, batch_size=10)

        assert report.stopped_early
        assert report.succeeded
        assert report.batches_sent == 1
        assert report.batches_failed == 1
        assert fake_server.push_calls == 2
        rows = sync_rows(session_factory)
        assert all(rows[i].synced_at is not None for i in ids[:10])
        for local_id in ids[10:20]:
            assert rows[local_id].retry_count == 1
            assert rows[local_id].sync_response.startswith("failed: NETWORK_UNREACHABLE")
        assert all(rows[i].retry_count == 0 for i in ids[20:])

    def test_server_errors_drain_until_retry_ceiling(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(3)
        fake_server.default_push = lambda body: httpx.Response(500, json={"code": "SRV_001", "message": "boom"})

        report = _run(session_factory, push_transport, credentials, batch_size=1, max_retries=2)

        assert report.planned_batches == 3
        assert fake_server.push_calls == 6
        assert report.batches_failed == 6
        assert not report.stopped_early
        assert report.eligible_after == 0
        assert report.succeeded
        rows = sync_rows(session_factory)
        assert all(rows[i].retry_count == 2 for i in ids)

    def test_repeated_partial_batches_are_not_cut_short(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(3)
        fake_server.default_push = _partial(0)

        report = _run(session_factory, push_transport, credentials, batch_size=2, max_retries=2)

        # {a, b} twice, then {c} twice
        assert fake_server.push_calls == 4
        assert not report.stopped_early
        assert report.eligible_after == 0
        rows = sync_rows(session_factory)
        assert all(rows[i].retry_count == 2 for i in ids)

    def test_legacy_response_fails_batch_only(self, session_factory, seed, fake_server, push_transport, credentials):
        seed(2)
        fake_server.push_responses = [httpx.Response(200, json={"processed": 1})]

        report = _run(session_factory, push_transport, credentials, batch_size=1)

        assert report.succeeded
        assert report.batches_failed == 1
        assert report.pushed == 2
        assert report.failures[0].code == "LEGACY_RESPONSE"


class TestBatchAccounting:
    def test_response_without_sync_id_reconciles(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(2)

        def no_sync_id(body):
            payload = json.loads(all_persisted(body).content)
            del payload["syncId"]
            return httpx.Response(200, json=payload)

        fake_server.default_push = no_sync_id
        report = _run(session_factory, push_transport, credentials)

        assert report.batches_sent == 1
        assert report.batches_failed == 0
        assert report.persisted == 2
        rows = sync_rows(session_factory)
        for local_id in ids:
            assert rows[local_id].synced_at is not None
            assert rows[local_id].sync_batch_id is None
            assert rows[local_id].retry_count == 0

    def test_batch_of_vanished_rows_sends_nothing(self, engine, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(2)
        with engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            conn.exec_driver_sql("DELETE FROM messages")
            conn.commit()
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        batches: list[BatchResult] = []

        report = _run(session_factory, push_transport, credentials, on_batch=batches.append, max_retries=2)

        assert fake_server.push_calls == 0
        assert report.batches_sent == 0
        assert report.batches_skipped == 2
        assert report.batches_failed == 0
        assert all(b.skipped for b in batches)
        assert not report.stopped_early
        rows = sync_rows(session_factory)
        for local_id in ids:
            assert rows[local_id].retry_count == 2
            assert rows[local_id].sync_response.startswith("failed: MISSING")


class TestAuthentication:
    def test_missing_credential_is_fatal_before_any_io(self, session_factory, seed, fake_server, push_transport):
        seed(2)
        report = _run(session_factory, push_transport, StaticCredentialProvider(None, None))
        assert isinstance(report.fatal_error, CredentialMissingError)
        assert fake_server.requests == []
        assert report.state is PushState.IDLE

    def test_rejected_at_start(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(2)
        fake_server.health_status = 401

        report = _run(session_factory, push_transport, credentials)

        assert isinstance(report.fatal_error, AuthenticationError)
        assert report.state is PushState.VERIFYING_AUTH
        assert fake_server.push_calls == 0
        rows = sync_rows(session_factory)
        assert all(rows[i].retry_count == 0 for i in ids)

    def test_periodic_recheck(self, session_factory, seed, fake_server, push_transport, credentials):
        seed(5)
        report = _run(session_factory, push_transport, credentials, batch_size=1, auth_recheck_interval=2)
        assert report.succeeded
        # before batches 1, 3 and 5
        assert fake_server.health_calls == 3

    def test_recheck_failure_aborts(self, session_factory, seed, fake_server, push_transport, credentials):
        seed(5)
        fake_server.health_sequence = [200, 401]

        report = _run(session_factory, push_transport, credentials, batch_size=1, auth_recheck_interval=2)

        assert isinstance(report.fatal_error, AuthenticationError)
        assert report.stopped_early
        assert report.batches_sent == 2
        assert report.eligible_after == 3

    def test_rejected_during_transmit(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(3)
        fake_server.push_responses = [httpx.Response(401, json={"code": "AUTH_002", "message": "expired"})]

        report = _run(session_factory, push_transport, credentials, batch_size=3)

        assert isinstance(report.fatal_error, AuthenticationError)
        assert report.stopped_early
        assert report.batches_failed == 0
        assert report.failed == 0
        assert fake_server.push_calls == 1
        rows = sync_rows(session_factory)
        for local_id in ids:
            assert rows[local_id].retry_count == 0
            assert rows[local_id].sync_response is None
            assert rows[local_id].synced_at is None

    def test_repeated_auth_loss_never_consumes_retries(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(2)
        for _ in range(4):
            fake_server.push_responses = [httpx.Response(401, json={"code": "AUTH_002", "message": "expired"})]
            report = _run(session_factory, push_transport, credentials, batch_size=2, max_retries=3)
            assert isinstance(report.fatal_error, AuthenticationError)

        rows = sync_rows(session_factory)
        assert all(rows[i].retry_count == 0 for i in ids)

        report = _run(session_factory, push_transport, credentials, batch_size=2, max_retries=3)
        assert report.succeeded
        assert report.pushed == 2

    def test_credential_revoked_mid_session(self, session_factory, seed, fake_server, push_transport, credentials):
        ids = seed(2)
        revocable = _RevocableCredentials()
        transport = PushTransport(API_BASE, revocable, transport=httpx.MockTransport(fake_server))

        report = _run(session_factory, transport, revocable, on_batch=lambda _: revocable.revoke(), batch_size=1)
        transport.close()

        assert isinstance(report.fatal_error, CredentialMissingError)
        assert report.batches_sent == 1
        assert fake_server.push_calls == 1
        rows = sync_rows(session_factory)
        assert rows[ids[0]].synced_at is not None
        assert rows[ids[1]].retry_count == 0
        assert rows[ids[1]].sync_response is None


class TestDryRun:
    def test_reports_plan_without_io_or_mutation(self, session_factory, seed, fake_server, push_transport, credentials):
        seed(5)
        seed(2, start=5, sync_rows=False)
        seed(1, start=7, retry_count=5)

        report = _run(session_factory, push_transport, credentials, dry_run=True, batch_size=3)

        assert report.dry_run
        assert report.state is PushState.DRY_RUN
        assert report.eligible_before == 7
        assert report.planned_batches == 3
        assert report.maxed_out == 1
        assert fake_server.requests == []
        assert len(sync_rows(session_factory)) == 6

    def test_force_preview(self, session_factory, seed, push_transport, credentials):
        seed(2, retry_count=5)
        report = _run(session_factory, push_transport, credentials, dry_run=True, force=True)
        assert report.force_reset_count == 2
        assert report.eligible_before == 2
        rows = sync_rows(session_factory)
        assert all(r.retry_count == 5 for r in rows.values())


class TestOptions:
    @pytest.mark.parametrize(
        "kwargs",
        [{"batch_size": 0}, {"max_retries": 0}, {"auth_recheck_interval": 0}],
    )
    def test_invalid_options_are_fatal(self, session_factory, push_transport, credentials, kwargs):
        report = _run(session_factory, push_transport, credentials, **kwargs)
        assert isinstance(report.fatal_error, ValidationError)

    def test_report_serializes(self, session_factory, seed, push_transport, credentials):
        seed(1)
        data = _run(session_factory, push_transport, credentials).to_dict()
        assert data["pushed"] == 1
        assert data["state"] == "batch_loop"
        assert data["fatal_error"] is None
