from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.webhooks import stripe_events
from settings import settings

SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", SECRET)


def _sign(payload: bytes, secret: str = SECRET) -> str:
    ts = int(time.time())
    signed = f"{ts}.".encode("utf-8") + payload
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def _event(event_type, obj, event_id=None):
    return {"id": event_id or f"evt_{uuid.uuid4().hex[:12]}", "type": event_type, "data": {"object": obj}}


def _post(client, event, *, secret=SECRET):
    raw = json.dumps(event).encode("utf-8")
    return client.post(
        "/v1/webhooks/stripe",
        content=raw,
        headers={"Stripe-Signature": _sign(raw, secret), "Content-Type": "application/json"},
    )


# ---------------------------
# HTTP surface
# ---------------------------

def test_invalid_signature_is_rejected(client, store):
    r = _post(client, _event("account.updated", {"id": "acct_1"}), secret="whsec_wrong")

    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_SIGNATURE"
    assert store.webhook_events.rows == {}


def test_missing_signature_header_is_rejected(client):
    r = client.post("/v1/webhooks/stripe", content=b"{}")

    assert r.status_code == 400


def test_missing_secret_is_server_error(client, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")

    r = _post(client, _event("account.updated", {"id": "acct_1"}))

    assert r.status_code == 500


def test_signed_account_update_is_applied(client, store):
    creator_id = str(uuid.uuid4())
    store.payout_accounts.link(creator_id, "acct_1")

    r = _post(client, _event("account.updated", {
        "id": "acct_1", "details_submitted": True, "payouts_enabled": True, "charges_enabled": True,
    }))

    assert r.status_code == 200
    assert r.json() == {"ok": True, "type": "account.updated", "outcome": "applied"}
    assert store.payout_accounts.rows[creator_id]["payouts_enabled"] is True


def test_redelivered_event_is_acknowledged_once(client, store):
    creator_id = str(uuid.uuid4())
    store.payout_accounts.link(creator_id, "acct_1")
    event = _event("account.updated", {"id": "acct_1", "payouts_enabled": True}, event_id="evt_same")

    assert _post(client, event).json()["outcome"] == "applied"
    assert _post(client, event).json()["outcome"] == "duplicate"


def test_paid_invoice_for_unknown_subscription_is_not_acknowledged(client):
    r = _post(client, _event("invoice.payment_succeeded", {
        "id": "in_1", "subscription": "sub_unknown", "amount_paid": 1000, "currency": "usd",
    }))

    assert r.status_code == 404


# ---------------------------
# dispatch
# ---------------------------

def test_unhandled_type_is_ignored_and_not_recorded(store):
    assert stripe_events.handle_event(None, _event("charge.refunded", {"id": "ch_1"})) == "ignored"
    assert store.webhook_events.rows == {}


def test_subscription_created_registers_from_metadata(store):
    subscriber_id, creator_id = str(uuid.uuid4()), str(uuid.uuid4())
    obj = {
        "id": "sub_ext_7",
        "status": "active",
        "metadata": {"subscriber_id": subscriber_id, "creator_id": creator_id},
        "items": {"data": [{"price": {"id": "price_gold"}}]},
        "current_period_end": 1_790_000_000,
    }

    assert stripe_events.handle_event(None, _event("customer.subscription.created", obj)) == "applied"

    row = store.subscriptions.get_by_external_id(None, "sub_ext_7")
    assert (row["subscriber_id"], row["creator_id"], row["price_ref"]) == (subscriber_id, creator_id, "price_gold")


def test_subscription_created_without_metadata_is_ignored(store):
    outcome = stripe_events.handle_event(None, _event("customer.subscription.created", {"id": "sub_ext_8"}))

    assert outcome == "ignored"
    assert store.subscriptions.rows == {}


def test_subscription_deleted_cancels(store):
    sub = store.subscriptions.add(subscriber_id=str(uuid.uuid4()), creator_id=str(uuid.uuid4()))

    outcome = stripe_events.handle_event(None, _event("customer.subscription.deleted", {"id": "sub_ext_1"}))

    assert outcome == "applied"
    assert store.subscriptions.rows[sub["id"]]["status"] == "canceled"


def test_invoice_payment_failed_marks_past_due(store):
    sub = store.subscriptions.add(subscriber_id=str(uuid.uuid4()), creator_id=str(uuid.uuid4()))
    obj = {"id": "in_9", "parent": {"subscription_details": {"subscription": "sub_ext_1"}}}

    assert stripe_events.handle_event(None, _event("invoice.payment_failed", obj)) == "applied"
    assert store.subscriptions.rows[sub["id"]]["status"] == "past_due"


def test_invoice_payment_succeeded_pays_creator(store, processor, connected_creator):
    store.subscriptions.add(subscriber_id=str(uuid.uuid4()), creator_id=connected_creator)
    obj = {
        "id": "in_10",
        "subscription": "sub_ext_1",
        "amount_paid": 2500,
        "currency": "USD",
        "status_transitions": {"paid_at": 1_780_000_000},
        "lines": {"data": [{"period": {"end": 1_782_000_000}}]},
    }

    assert stripe_events.handle_event(None, _event("invoice.payment_succeeded", obj)) == "applied"

    _, kwargs = [c for c in processor.calls if c[0] == "transfer.create"][0]
    assert (kwargs["amount_cents"], kwargs["currency"]) == (2000, "usd")


def test_subscription_updated_ends_elapsed_pause(client, store):
    sub = store.subscriptions.add(subscriber_id=str(uuid.uuid4()), creator_id=str(uuid.uuid4()), status="paused")
    store.subscriptions.rows[sub["id"]]["pause_until"] = datetime.now(timezone.utc) - timedelta(days=1)

    r = _post(client, _event("customer.subscription.updated", {
        "id": "sub_ext_1", "status": "active", "pause_collection": None,
    }))

    assert r.status_code == 200, r.text
    assert r.json()["outcome"] == "applied"
    row = store.subscriptions.rows[sub["id"]]
    assert (row["status"], row["pause_until"]) == ("active", None)


def test_subscription_updated_during_pause_is_ignored(store):
    sub = store.subscriptions.add(subscriber_id=str(uuid.uuid4()), creator_id=str(uuid.uuid4()), status="paused")
    store.subscriptions.rows[sub["id"]]["pause_until"] = datetime.now(timezone.utc) + timedelta(days=5)
    obj = {"id": "sub_ext_1", "status": "active", "pause_collection": {"behavior": "void", "resumes_at": 1}}

    event = _event("customer.subscription.updated", obj)
    assert stripe_events.handle_event(None, event) == "ignored"

    assert store.subscriptions.rows[sub["id"]]["status"] == "paused"
    assert store.webhook_events.rows[("stripe", event["id"])]["outcome"] == "ignored"


def test_subscription_updated_without_status_change_is_ignored(store):
    store.subscriptions.add(subscriber_id=str(uuid.uuid4()), creator_id=str(uuid.uuid4()))
    event = _event("customer.subscription.updated", {"id": "sub_ext_1", "status": "active"})

    assert stripe_events.handle_event(None, event) == "ignored"
    assert store.webhook_events.rows[("stripe", event["id"])]["outcome"] == "ignored"


def test_subscription_period_end_read_from_item(store):
    obj = {
        "id": "sub_ext_11",
        "status": "active",
        "metadata": {"subscriber_id": str(uuid.uuid4()), "creator_id": str(uuid.uuid4())},
        "items": {"data": [{"price": {"id": "price_gold"}, "current_period_end": 1_790_000_000}]},
    }

    stripe_events.handle_event(None, _event("customer.subscription.created", obj))

    row = store.subscriptions.get_by_external_id(None, "sub_ext_11")
    assert row["current_period_end"] == datetime.fromtimestamp(1_790_000_000, tz=timezone.utc)


def test_event_handling_runs_off_the_event_loop(client, monkeypatch):
    seen = {}

    def fake_handle_event(conn, event):
        try:
            asyncio.get_running_loop()
            seen["loop"] = True
        except RuntimeError:
            seen["loop"] = False
        return "applied"

    monkeypatch.setattr(stripe_events, "handle_event", fake_handle_event)

    r = _post(client, _event("account.updated", {"id": "acct_1"}))

    assert r.status_code == 200, r.text
    assert seen == {"loop": False}
