from datetime import datetime, timedelta, timezone

import pytest

from helpers import ALICE, BOB, CAROL, DAVE, OWNER, create_transfer, post_transition, record_movement, seed_inventory, stock_at
from stockflow.core.errors import AlreadyProcessedError, LedgerWriteFailure
from stockflow.core.permissions import get_authorizer
from stockflow.services import transfer_service
from stockflow.services.location_access_service import get_location_access
from stockflow.services.transfer_job_service import retry_delay
from stockflow.services.transfer_service import TransferPorts
from stockflow.worker import TransferWorker


@pytest.fixture()
def worker_factory(test_context, notifier):
    _, session_local = test_context
    ports = TransferPorts(authorizer=get_authorizer(), location_access=get_location_access(), notifier=notifier)

    def build(**kwargs) -> TransferWorker:
        return TransferWorker(session_local, ports=ports, **kwargs)

    return build


def _checked_transfer(client, seed) -> str:
    transfer_id = create_transfer(client, seed)["id"]
    assert post_transition(client, transfer_id, "submit", ALICE).status_code == 200
    assert post_transition(client, transfer_id, "check/approve", BOB).status_code == 200
    return transfer_id


def _later(hours: int = 1) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


def test_send_async_is_processed_by_worker_tick(test_context, worker_factory, notifier):
    client, _ = test_context
    seed = seed_inventory(client)
    transfer_id = _checked_transfer(client, seed)

    queued = post_transition(client, transfer_id, "send-async", CAROL)
    assert queued.status_code == 202, queued.text
    job = queued.json()
    assert job["status"] == "pending"
    assert job["job_type"] == "transfer_send"
    assert job["attempt_count"] == 0

    assert client.get(f"/transfers/{transfer_id}", headers=CAROL).json()["status"] == "checked"

    summary = worker_factory().tick(now=_later())
    assert summary["jobs"].processed == 1
    assert summary["jobs"].completed == 1

    res = client.get(f"/transfer-jobs/{job['id']}", headers=CAROL)
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "completed"
    assert res.json()["attempt_count"] == 1

    transfer = client.get(f"/transfers/{transfer_id}", headers=CAROL).json()
    assert transfer["status"] == "in_transit"
    assert transfer["sent_by"] == "carol"
    assert stock_at(client, seed["source_id"], seed["variation_id"]) == 90
    assert "transfer_sent" in notifier.events()


def test_async_enqueue_runs_guards_up_front(test_context):
    client, _ = test_context
    seed = seed_inventory(client)
    transfer_id = _checked_transfer(client, seed)

    res = post_transition(client, transfer_id, "send-async", ALICE)
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "forbidden_same_actor"

    too_early = post_transition(client, transfer_id, "complete-async", DAVE)
    assert too_early.status_code == 400
    assert too_early.json()["error"]["code"] == "invalid_status"


def test_job_fails_when_guard_breaks_before_dispatch(test_context, worker_factory):
    client, _ = test_context
    seed = seed_inventory(client, opening=10)
    transfer_id = _checked_transfer(client, seed)
    job_id = post_transition(client, transfer_id, "send-async", CAROL).json()["id"]

    assert record_movement(client, seed["source_id"], seed["variation_id"], "sale", 5).status_code == 201

    summary = worker_factory().tick(now=_later())
    assert summary["jobs"].failed == 1

    job = client.get(f"/transfer-jobs/{job_id}", headers=CAROL).json()
    assert job["status"] == "failed"
    assert job["error_code"] == "insufficient_stock"
    assert client.get(f"/transfers/{transfer_id}", headers=CAROL).json()["status"] == "checked"


def test_job_already_processed_counts_as_completed(test_context, worker_factory):
    client, _ = test_context
    seed = seed_inventory(client)
    transfer_id = _checked_transfer(client, seed)
    job_id = post_transition(client, transfer_id, "send-async", CAROL).json()["id"]
    assert post_transition(client, transfer_id, "send", CAROL).status_code == 200

    worker_factory().tick(now=_later())

    job = client.get(f"/transfer-jobs/{job_id}", headers=CAROL).json()
    assert job["status"] == "completed"
    assert job["error_code"] == "already_processed"
    assert stock_at(client, seed["source_id"], seed["variation_id"]) == 90


def test_ledger_failures_retry_then_dead_letter(test_context, worker_factory, monkeypatch):
    client, _ = test_context
    seed = seed_inventory(client)
    transfer_id = _checked_transfer(client, seed)
    job_id = post_transition(client, transfer_id, "send-async", CAROL).json()["id"]

    def failing_send(*args, **kwargs):
        raise LedgerWriteFailure("database unavailable")

    monkeypatch.setitem(transfer_service.TRANSITION_HANDLERS, "send", failing_send)
    worker = worker_factory()

    worker.tick(now=_later())
    job = client.get(f"/transfer-jobs/{job_id}", headers=CAROL).json()
    assert job["status"] == "retrying"
    assert job["attempt_count"] == 1
    assert job["error_code"] == "ledger_write_failure"

    not_due = worker.tick(now=datetime.now(timezone.utc))
    assert not_due["jobs"].processed == 0

    worker.tick(now=_later(hours=24))
    assert client.get(f"/transfer-jobs/{job_id}", headers=CAROL).json()["status"] == "retrying"

    summary = worker.tick(now=_later(hours=48))
    assert summary["jobs"].dead_lettered == 1
    job = client.get(f"/transfer-jobs/{job_id}", headers=CAROL).json()
    assert job["status"] == "dead_letter"
    assert job["attempt_count"] == 3
    assert job["finished_at"] is not None

    assert client.get(f"/transfers/{transfer_id}", headers=CAROL).json()["status"] == "checked"


def test_retry_delay_grows_exponentially():
    assert retry_delay(2) == retry_delay(1) * 2
    assert retry_delay(3) == retry_delay(1) * 4


def test_worker_tick_reconciles_on_first_tick_then_on_interval(test_context, worker_factory):
    client, _ = test_context
    seed_inventory(client)
    worker = worker_factory(reconciliation_interval=timedelta(minutes=30), reconciliation_mode="report")
    start = datetime.now(timezone.utc)

    assert worker.tick(now=start)["reconciled_businesses"] == 1
    assert worker.tick(now=start + timedelta(minutes=10))["reconciled_businesses"] == 0
    assert worker.tick(now=start + timedelta(minutes=31))["reconciled_businesses"] == 1

    runs = client.get("/reconciliation/runs", headers=OWNER).json()
    assert runs["pagination"]["total"] == 2
    assert {run["triggered_by"] for run in runs["items"]} == {"system"}


def test_unknown_job_is_not_found(test_context):
    client, _ = test_context
    res = client.get("/transfer-jobs/missing", headers=CAROL)
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "not_found"


def test_concurrent_modification_is_retried_not_completed(test_context, worker_factory, monkeypatch):
    client, _ = test_context
    seed = seed_inventory(client)
    transfer_id = _checked_transfer(client, seed)
    job_id = post_transition(client, transfer_id, "send-async", CAROL).json()["id"]

    def contended_send(*args, **kwargs):
        raise AlreadyProcessedError("Transfer was modified concurrently", code="concurrent_modification")

    monkeypatch.setitem(transfer_service.TRANSITION_HANDLERS, "send", contended_send)
    summary = worker_factory().tick(now=_later())
    assert summary["jobs"].retried == 1
    assert summary["jobs"].completed == 0

    job = client.get(f"/transfer-jobs/{job_id}", headers=CAROL).json()
    assert job["status"] == "retrying"
    assert job["error_code"] == "concurrent_modification"
    assert job["finished_at"] is None
    assert client.get(f"/transfers/{transfer_id}", headers=CAROL).json()["status"] == "checked"

    monkeypatch.undo()
    worker_factory().tick(now=_later(hours=24))

    job = client.get(f"/transfer-jobs/{job_id}", headers=CAROL).json()
    assert job["status"] == "completed"
    assert job["attempt_count"] == 2
    assert client.get(f"/transfers/{transfer_id}", headers=CAROL).json()["status"] == "in_transit"
    assert stock_at(client, seed["source_id"], seed["variation_id"]) == 90
