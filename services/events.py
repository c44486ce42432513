# services/events.py
"""
Structured events for the notification collaborator.

Events are written to app.domain_events inside the caller's transaction, so
an event exists only if the state change that produced it committed. The
notifier polls that table; nothing here formats or sends messages.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from psycopg2.extras import Json

from db import get_conn
from services.errors import CreatorPayError
from services.observability import get_request_id

logger = logging.getLogger("creatorpay.events")

TRANSFER_RESOLVED = "transfer.resolved"
TRANSFER_FAILED = "transfer.failed"
TRANSFER_RETRIES_EXHAUSTED = "transfer.retries_exhausted"
SUBSCRIPTION_PRICE_CHANGED = "subscription.price_changed"
SUBSCRIPTION_PAUSED = "subscription.paused"
SUBSCRIPTION_RESUMED = "subscription.resumed"
SUBSCRIPTION_CANCEL_SCHEDULED = "subscription.cancel_scheduled"
SUBSCRIPTION_CANCELED = "subscription.canceled"
SUBSCRIPTION_PAST_DUE = "subscription.past_due"
REFUND_REQUESTED = "refund.requested"
REFUND_PROCESSED = "refund.processed"
REFUND_REJECTED = "refund.rejected"
REFERRAL_ACTIVATED = "referral.activated"
REFERRAL_EXPIRED = "referral.expired"
REFERRAL_PAYOUT_SENT = "referral.payout_sent"
OPERATOR_ALERT = "operator.alert"


def emit_event(
    conn,
    event_type: str,
    *,
    entity_type: str,
    entity_id: str,
    payload: dict[str, Any] | None = None,
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.domain_events (event_type, entity_type, entity_id, payload, request_id)
            VALUES (%s, %s, %s, %s::jsonb, %s);
            """,
            (event_type, entity_type, str(entity_id), Json(payload or {}, dumps=_dumps), get_request_id()),
        )
    logger.info("event %s %s:%s", event_type, entity_type, entity_id)


def alert_operator(exc: CreatorPayError, *, entity_type: str) -> None:
    """
    Surface a fatal/data-integrity error. Runs in its own transaction because
    the caller's transaction is about to roll back with the error.
    """
    logger.error("OPERATOR ALERT %s", exc.context())

    try:
        with get_conn() as conn:
            emit_event(
                conn,
                OPERATOR_ALERT,
                entity_type=entity_type,
                entity_id=exc.entity_id or "unknown",
                payload=exc.context(),
            )
    except Exception:
        logger.exception("failed to persist operator alert %s", exc.code)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)
