# app/webhooks/stripe_events.py
"""
Dispatch of verified processor events to the owning component:

  account.updated                  -> Payout Account Connector
  customer.subscription.created    -> subscription registration
  customer.subscription.updated    -> processor status sync
  customer.subscription.deleted    -> period-end cancellation (only path to canceled)
  invoice.payment_succeeded        -> invoice intake
  invoice.payment_failed           -> active -> past_due

Anything else is acknowledged and ignored.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from app.invoices import service as invoices
from app.invoices.service import PaidInvoice, from_timestamp
from app.payout_accounts import connector
from app.providers.base import AccountStatus
from app.subscriptions import service as lifecycle
from app.webhooks import repository
from services.observability import get_request_id

logger = logging.getLogger("creatorpay.webhooks")

PROVIDER = "stripe"

IGNORED = "ignored"
DUPLICATE = "duplicate"
APPLIED = "applied"


def handle_event(conn, event: dict[str, Any]) -> str:
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    obj = ((event.get("data") or {}).get("object")) or {}

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("webhook ignored type=%s id=%s", event_type, event_id)
        return IGNORED

    if not repository.record_event(
        conn,
        provider=PROVIDER,
        event_id=event_id,
        event_type=event_type,
        request_id=get_request_id(),
        payload_summary={"object_id": obj.get("id"), "status": obj.get("status")},
    ):
        logger.info("webhook duplicate type=%s id=%s", event_type, event_id)
        return DUPLICATE

    outcome = handler(conn, obj)
    repository.mark_processed(conn, provider=PROVIDER, event_id=event_id, outcome=outcome)
    logger.info("webhook handled type=%s id=%s outcome=%s", event_type, event_id, outcome)
    return outcome


def _account_updated(conn, obj: dict[str, Any]) -> str:
    remote = AccountStatus(
        account_id=obj["id"],
        onboarding_complete=bool(obj.get("details_submitted")),
        payouts_enabled=bool(obj.get("payouts_enabled")),
        charges_enabled=bool(obj.get("charges_enabled")),
    )
    return APPLIED if connector.apply_account_update(conn, remote) else IGNORED


def _first_item(obj: dict[str, Any]) -> dict[str, Any]:
    items = ((obj.get("items") or {}).get("data")) or []
    return (items[0] or {}) if items else {}


def _price_ref(obj: dict[str, Any]) -> str | None:
    return (_first_item(obj).get("price") or {}).get("id")


def _period_end(obj: dict[str, Any]) -> datetime | None:
    value = obj.get("current_period_end")
    if value is None:
        # newer API versions carry the period on the item
        value = _first_item(obj).get("current_period_end")
    return from_timestamp(value)


def _subscription_created(conn, obj: dict[str, Any]) -> str:
    meta = obj.get("metadata") or {}
    subscriber_id = meta.get("subscriber_id")
    creator_id = meta.get("creator_id")
    if not subscriber_id or not creator_id:
        logger.warning("subscription created without subscriber/creator metadata ext=%s", obj.get("id"))
        return IGNORED

    sub = lifecycle.register_subscription(
        conn,
        subscriber_id=subscriber_id,
        creator_id=creator_id,
        external_subscription_id=obj["id"],
        price_ref=_price_ref(obj),
        current_period_end=_period_end(obj),
    )
    return APPLIED if sub else IGNORED


def _subscription_updated(conn, obj: dict[str, Any]) -> str:
    # pause_collection is null once the pause is lifted; absent means unknown
    paused = bool(obj["pause_collection"]) if "pause_collection" in obj else None
    sub = lifecycle.sync_from_processor(
        conn,
        external_subscription_id=obj["id"],
        processor_status=obj.get("status") or "",
        current_period_end=_period_end(obj),
        processor_paused=paused,
    )
    return APPLIED if sub else IGNORED


def _subscription_deleted(conn, obj: dict[str, Any]) -> str:
    sub = lifecycle.sync_from_processor(
        conn,
        external_subscription_id=obj["id"],
        processor_status="canceled",
    )
    return APPLIED if sub else IGNORED


def _invoice_subscription_id(obj: dict[str, Any]) -> str | None:
    sub = obj.get("subscription")
    if isinstance(sub, dict):
        return sub.get("id")
    if sub:
        return str(sub)
    parent = ((obj.get("parent") or {}).get("subscription_details")) or {}
    return parent.get("subscription")


def _invoice_paid(conn, obj: dict[str, Any]) -> str:
    ext_id = _invoice_subscription_id(obj)
    if not ext_id:
        return IGNORED

    transitions = (obj.get("status_transitions") or {})
    paid_at = from_timestamp(transitions.get("paid_at") or obj.get("created")) or datetime.now(timezone.utc)
    lines = ((obj.get("lines") or {}).get("data")) or []
    period_end = from_timestamp(((lines[0] or {}).get("period") or {}).get("end")) if lines else None

    invoices.handle_invoice_paid(
        conn,
        PaidInvoice(
            external_subscription_id=ext_id,
            invoice_id=obj["id"],
            amount_paid_cents=int(obj.get("amount_paid") or 0),
            currency=(obj.get("currency") or "usd").lower(),
            paid_at=paid_at,
            period_end=period_end,
        ),
    )
    return APPLIED


def _invoice_failed(conn, obj: dict[str, Any]) -> str:
    ext_id = _invoice_subscription_id(obj)
    if not ext_id:
        return IGNORED
    sub = invoices.handle_invoice_failed(conn, external_subscription_id=ext_id, invoice_id=obj["id"])
    return APPLIED if sub else IGNORED


HANDLERS: dict[str, Callable[[Any, dict[str, Any]], str]] = {
    "account.updated": _account_updated,
    "customer.subscription.created": _subscription_created,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_succeeded": _invoice_paid,
    "invoice.payment_failed": _invoice_failed,
}
