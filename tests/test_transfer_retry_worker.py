from __future__ import annotations

import uuid

from app.workers import transfer_retry_worker as worker
from services import events


def _park(store, creator_id, *, amount_cents=1500, invoice_id=None):
    return store.failed_transfers.insert_failed_transfer(
        None,
        creator_id=creator_id,
        kind="creator_earnings",
        amount_cents=amount_cents,
        currency="usd",
        error_message="Gateway timeout",
        subscription_id=str(uuid.uuid4()),
        invoice_id=invoice_id or f"in_{uuid.uuid4().hex[:8]}",
    )


def test_three_failures_exhaust_and_drop_out_of_selection(store, processor, connected_creator):
    ft = _park(store, connected_creator)
    processor.fail_next("transfer.create", times=3)

    results = [worker.process_once() for _ in range(4)]

    row = store.failed_transfers.rows[ft["id"]]
    assert row["retry_count"] == 3
    assert row["resolved_at"] is None
    assert [r.get("failed", 0) for r in results] == [1, 1, 1, 0]
    assert results[2]["exhausted"] == 1
    assert results[3]["processed"] == 0
    assert processor.operations().count("transfer.create") == 3
    assert store.event_types().count(events.TRANSFER_RETRIES_EXHAUSTED) == 1


def test_success_resolves_and_is_never_reselected(store, processor, connected_creator):
    ft = _park(store, connected_creator)

    first = worker.process_once()
    second = worker.process_once()

    row = store.failed_transfers.rows[ft["id"]]
    assert first == {"processed": 1, "resolved": 1}
    assert second == {"processed": 0}
    assert row["resolved_at"] is not None
    assert row["external_transfer_id"].startswith("tr_mock_")
    assert row["retry_count"] == 0
    assert store.event_types() == [events.TRANSFER_RESOLVED]


def test_retry_after_failure_uses_fresh_idempotency_key(store, processor, connected_creator):
    ft = _park(store, connected_creator)
    processor.fail_next("transfer.create")

    worker.process_once()
    worker.process_once()

    keys = [kw["idempotency_key"] for op, kw in processor.calls if op == "transfer.create"]
    assert keys == [f"failed-transfer-{ft['id']}-attempt-1", f"failed-transfer-{ft['id']}-attempt-2"]
    assert store.failed_transfers.rows[ft["id"]]["resolved_at"] is not None


def test_disabled_payouts_skip_without_spending_an_attempt(store, processor):
    creator_id = str(uuid.uuid4())
    store.payout_accounts.link(creator_id, "acct_off")
    processor.set_account("acct_off", payouts_enabled=False)
    ft = _park(store, creator_id)

    result = worker.process_once()

    row = store.failed_transfers.rows[ft["id"]]
    assert result == {"processed": 1, worker.SKIPPED_DISABLED: 1}
    assert row["retry_count"] == 0
    assert row["last_retry_at"] is None
    assert "transfer.create" not in processor.operations()


def test_status_check_outage_skips_without_spending_an_attempt(store, processor, connected_creator):
    ft = _park(store, connected_creator)
    processor.fail_next("account.retrieve")

    result = worker.process_once()

    assert result[worker.SKIPPED_STATUS_ERROR] == 1
    assert store.failed_transfers.rows[ft["id"]]["retry_count"] == 0


def test_payouts_enabled_later_resolves_parked_transfer(store, processor):
    creator_id = str(uuid.uuid4())
    store.payout_accounts.link(creator_id, "acct_late")
    processor.set_account("acct_late", payouts_enabled=False)
    ft = _park(store, creator_id)

    worker.process_once()
    processor.set_account("acct_late", payouts_enabled=True)
    result = worker.process_once()

    assert result["resolved"] == 1
    assert store.failed_transfers.rows[ft["id"]]["resolved_at"] is not None


def test_retry_count_never_decreases(store, processor, connected_creator):
    ft = _park(store, connected_creator)
    seen = []
    processor.fail_next("transfer.create", times=2)

    for _ in range(3):
        worker.process_once()
        seen.append(store.failed_transfers.rows[ft["id"]]["retry_count"])

    assert seen == sorted(seen)
    assert seen == [1, 2, 2]


def test_oldest_first_and_batch_bounded(store, processor, connected_creator):
    first = _park(store, connected_creator, amount_cents=100)
    second = _park(store, connected_creator, amount_cents=200)
    _park(store, connected_creator, amount_cents=300)

    result = worker.process_once(batch_size=2)

    amounts = [kw["amount_cents"] for op, kw in processor.calls if op == "transfer.create"]
    assert result["processed"] == 2
    assert amounts == [100, 200]
    assert store.failed_transfers.rows[first["id"]]["resolved_at"] is not None
    assert store.failed_transfers.rows[second["id"]]["resolved_at"] is not None


def test_locked_record_is_skipped(store, processor, connected_creator):
    ft = _park(store, connected_creator)
    store.failed_transfers.locked.add(ft["id"])

    result = worker.process_once()

    assert result == {"processed": 1, worker.SKIPPED_LOCKED: 1}
    assert processor.calls == []
