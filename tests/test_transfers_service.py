import uuid

from app.transfers import service
from services import events


def _send(recipient_id, **overrides):
    kwargs = dict(
        recipient_id=recipient_id,
        kind="creator_earnings",
        amount_cents=800,
        currency="usd",
        idempotency_key="invoice-transfer-in_1",
        description="Creator earnings for invoice in_1",
        subscription_id="sub-1",
        invoice_id="in_1",
        metadata={"invoice_id": "in_1"},
    )
    kwargs.update(overrides)
    return service.send_or_record(None, **kwargs)


def test_sent_when_payouts_enabled(store, processor, connected_creator):
    outcome = _send(connected_creator)

    assert outcome.sent is True
    assert outcome.failed_transfer_id is None
    assert store.failed_transfers.rows == {}
    _, kwargs = [c for c in processor.calls if c[0] == "transfer.create"][0]
    assert kwargs["destination"] == f"acct_{connected_creator[:8]}"
    assert kwargs["idempotency_key"] == "invoice-transfer-in_1"


def test_processor_failure_is_parked_with_verbatim_message(store, processor, connected_creator):
    processor.fail_next("transfer.create", message="Insufficient platform balance")

    outcome = _send(connected_creator)

    assert outcome.sent is False
    row = store.failed_transfers.rows[outcome.failed_transfer_id]
    assert row["error_message"] == "Insufficient platform balance"
    assert row["retry_count"] == 0
    assert row["metadata"]["retryable"] == "True"
    assert store.event_types() == [events.TRANSFER_FAILED]


def test_disabled_payouts_are_parked_without_calling_transfer(store, processor):
    creator_id = str(uuid.uuid4())

    outcome = _send(creator_id)

    assert outcome.sent is False
    assert "transfer.create" not in processor.operations()
    row = store.failed_transfers.rows[outcome.failed_transfer_id]
    assert row["error_message"] == "payouts are not enabled for this creator"


def test_second_failure_for_same_invoice_is_not_duplicated(store, processor):
    creator_id = str(uuid.uuid4())

    first = _send(creator_id)
    second = _send(creator_id)

    assert first.failed_transfer_id is not None
    assert second.failed_transfer_id is None
    assert len(store.failed_transfers.rows) == 1
    assert store.event_types() == [events.TRANSFER_FAILED]
