# app/subscriptions/service.py
"""
Subscription State Machine: subscriber-initiated lifecycle actions plus the
processor-reported transitions (past_due, recovery, end of a pause,
period-end cancel).

The processor is called first; the local row is only updated after it
confirms, and only if the row is still in the state we read.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from app.providers.factory import get_processor
from app.subscriptions import repository
from app.subscriptions.commands import Cancel, ChangePrice, Pause, Resume, SubscriptionCommand
from app.subscriptions.model import ACTIVE, CANCELED, PAST_DUE, PAUSED, Subscription
from app.subscriptions.state_machine import assert_transition, can_transition
from services import events
from services.errors import (
    ConcurrentUpdate,
    MissingExternalReference,
    NoMatchingSubscription,
    ProcessorError,
    wrap_processor_error,
)

logger = logging.getLogger("creatorpay.subscriptions")

ENTITY = "subscription"


def apply_command(conn, *, subscriber_id: str, creator_id: str, command: SubscriptionCommand) -> Subscription:
    row = repository.get_open_subscription(conn, subscriber_id=subscriber_id, creator_id=creator_id)
    if not row or row["status"] not in command.allowed_from:
        raise NoMatchingSubscription(
            f"no matching active subscription for {command.operation}",
            entity_id=f"{subscriber_id}:{creator_id}",
            operation=command.operation,
        )

    current = Subscription.from_row(row)
    if not current.external_subscription_id:
        err = MissingExternalReference(
            "subscription has no external subscription reference",
            entity_id=current.id,
            operation=command.operation,
        )
        events.alert_operator(err, entity_type=ENTITY)
        raise err

    try:
        result = command.call_processor(get_processor(), current.external_subscription_id)
    except ProcessorError as e:
        logger.warning(
            "subscription %s failed at processor sub=%s retryable=%s",
            command.operation, current.id, e.retryable,
        )
        raise wrap_processor_error(e, entity_id=current.id) from e

    change = command.changes(current, result)
    assert_transition(current.status, change.status, subscription_id=current.id)

    ok = repository.apply_transition(
        conn,
        subscription_id=current.id,
        from_status=current.status,
        new_status=change.status,
        pause_until=change.pause_until,
        price_ref=change.price_ref,
        cancel_at_period_end=change.cancel_at_period_end,
        current_period_end=change.current_period_end,
    )
    if not ok:
        # processor already applied the change; the next sync reconciles the row
        logger.error(
            "subscription %s applied at processor but local row moved sub=%s expected=%s",
            command.operation, current.id, current.status,
        )
        raise ConcurrentUpdate(
            "subscription changed concurrently, retry the request",
            entity_id=current.id,
            operation=command.operation,
        )

    payload = {"subscriber_id": current.subscriber_id, "creator_id": current.creator_id, "status": change.status}
    payload.update(command.event_payload())
    events.emit_event(conn, command.event_type, entity_type=ENTITY, entity_id=current.id, payload=payload)

    logger.info("subscription %s sub=%s %s -> %s", command.operation, current.id, current.status, change.status)
    return Subscription.from_row(repository.get_subscription(conn, current.id) or row)


def change_price(conn, *, subscriber_id: str, creator_id: str, new_price_ref: str) -> Subscription:
    return apply_command(conn, subscriber_id=subscriber_id, creator_id=creator_id,
                         command=ChangePrice(new_price_ref=new_price_ref))


def pause(conn, *, subscriber_id: str, creator_id: str, resume_at: datetime) -> Subscription:
    return apply_command(conn, subscriber_id=subscriber_id, creator_id=creator_id,
                         command=Pause(resume_at=resume_at))


def resume(conn, *, subscriber_id: str, creator_id: str) -> Subscription:
    return apply_command(conn, subscriber_id=subscriber_id, creator_id=creator_id, command=Resume())


def cancel(conn, *, subscriber_id: str, creator_id: str) -> Subscription:
    return apply_command(conn, subscriber_id=subscriber_id, creator_id=creator_id, command=Cancel())


# ==========================================================
# Processor-reported changes
# ==========================================================

def register_subscription(
    conn,
    *,
    subscriber_id: str,
    creator_id: str,
    external_subscription_id: str,
    price_ref: Optional[str],
    current_period_end: Optional[datetime],
) -> Optional[Subscription]:
    existing = repository.get_by_external_id(conn, external_subscription_id)
    if existing:
        return Subscription.from_row(existing)

    row = repository.insert_subscription(
        conn,
        subscriber_id=subscriber_id,
        creator_id=creator_id,
        external_subscription_id=external_subscription_id,
        price_ref=price_ref,
        current_period_end=current_period_end,
    )
    if row is None:
        logger.warning(
            "checkout for pair with an open subscription subscriber=%s creator=%s ext=%s",
            subscriber_id, creator_id, external_subscription_id,
        )
        return None
    logger.info("subscription registered sub=%s ext=%s", row["id"], external_subscription_id)
    return Subscription.from_row(row)


_PROCESSOR_STATUS_MAP = {
    "active": ACTIVE,
    "trialing": ACTIVE,
    "past_due": PAST_DUE,
    "unpaid": PAST_DUE,
    "canceled": CANCELED,
    "incomplete_expired": CANCELED,
}


def _pause_over(current: Subscription, processor_paused: Optional[bool], now: datetime) -> bool:
    if processor_paused is False:
        return True
    return current.pause_until is not None and current.pause_until <= now


def sync_from_processor(
    conn,
    *,
    external_subscription_id: str,
    processor_status: str,
    current_period_end: Optional[datetime] = None,
    cancel_at_period_end: Optional[bool] = None,
    processor_paused: Optional[bool] = None,
) -> Optional[Subscription]:
    """
    Apply a status the processor reports. Returns the updated subscription,
    or None when nothing changed.

    The processor keeps reporting 'active' while collection is paused, so a
    paused row only moves back to active once the pause is over: the
    processor shows no pause (`processor_paused=False`) or the local
    `pause_until` has passed. `processor_paused=None` means the caller does
    not know the processor's pause state.
    """
    row = repository.get_by_external_id(conn, external_subscription_id)
    if not row:
        logger.info("processor update for unknown subscription ext=%s", external_subscription_id)
        return None

    current = Subscription.from_row(row)
    target = _PROCESSOR_STATUS_MAP.get((processor_status or "").strip().lower())
    if target is None or target == current.status:
        return None
    if target == ACTIVE and current.status == PAUSED:
        if not _pause_over(current, processor_paused, datetime.now(timezone.utc)):
            return None
    elif target == ACTIVE and current.status != PAST_DUE:
        return None
    if not can_transition(current.status, target):
        logger.info("ignored processor status sub=%s %s -> %s", current.id, current.status, target)
        return None

    ok = repository.apply_transition(
        conn,
        subscription_id=current.id,
        from_status=current.status,
        new_status=target,
        pause_until=current.pause_until if target == PAST_DUE else None,
        price_ref=current.price_ref,
        cancel_at_period_end=current.cancel_at_period_end if cancel_at_period_end is None else cancel_at_period_end,
        current_period_end=current_period_end or current.current_period_end,
    )
    if not ok:
        logger.warning("processor sync lost race sub=%s expected=%s", current.id, current.status)
        return None

    event_type = {
        CANCELED: events.SUBSCRIPTION_CANCELED,
        PAST_DUE: events.SUBSCRIPTION_PAST_DUE,
        ACTIVE: events.SUBSCRIPTION_RESUMED,
    }[target]
    events.emit_event(
        conn,
        event_type,
        entity_type=ENTITY,
        entity_id=current.id,
        payload={"subscriber_id": current.subscriber_id, "creator_id": current.creator_id, "status": target},
    )
    logger.info("subscription synced sub=%s %s -> %s", current.id, current.status, target)
    return Subscription.from_row(repository.get_subscription(conn, current.id) or row)
