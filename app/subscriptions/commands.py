# app/subscriptions/commands.py
"""
One command type per lifecycle operation.

Each command validates its own input when constructed and declares the
states it may start from, so an illegal request fails before anything
touches the processor or the database.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar, Optional

from app.providers.base import PaymentProcessor, SubscriptionResult
from app.subscriptions.model import ACTIVE, PAST_DUE, PAUSED, Subscription
from services import events
from services.errors import InvalidCommand, InvalidPauseDate


@dataclass(frozen=True)
class Changes:
    status: str
    pause_until: Optional[datetime]
    price_ref: Optional[str]
    cancel_at_period_end: bool
    current_period_end: Optional[datetime]


class SubscriptionCommand:
    operation: ClassVar[str]
    allowed_from: ClassVar[frozenset[str]]
    event_type: ClassVar[str]

    def call_processor(self, processor: PaymentProcessor, external_id: str) -> SubscriptionResult:
        raise NotImplementedError

    def changes(self, current: Subscription, result: SubscriptionResult) -> Changes:
        raise NotImplementedError

    def event_payload(self) -> dict:
        return {}


def _period_end(current: Subscription, result: SubscriptionResult) -> Optional[datetime]:
    return result.current_period_end or current.current_period_end


@dataclass(frozen=True)
class ChangePrice(SubscriptionCommand):
    """Upgrade or downgrade. Proration is computed by the processor."""

    new_price_ref: str

    operation: ClassVar[str] = "change_price"
    allowed_from: ClassVar[frozenset[str]] = frozenset({ACTIVE})
    event_type: ClassVar[str] = events.SUBSCRIPTION_PRICE_CHANGED

    def __post_init__(self):
        if not (self.new_price_ref or "").strip():
            raise InvalidCommand("new price reference is required", operation=self.operation)

    def call_processor(self, processor, external_id):
        return processor.change_subscription_price(
            external_id,
            new_price_ref=self.new_price_ref,
            proration_behavior="create_prorations",
        )

    def changes(self, current, result):
        return Changes(
            status=current.status,
            pause_until=current.pause_until,
            price_ref=result.price_ref or self.new_price_ref,
            cancel_at_period_end=current.cancel_at_period_end,
            current_period_end=_period_end(current, result),
        )

    def event_payload(self):
        return {"new_price_ref": self.new_price_ref}


@dataclass(frozen=True)
class Pause(SubscriptionCommand):
    """Suspend billing until `resume_at`. `resume_at` must be aware and in the future."""

    resume_at: datetime

    operation: ClassVar[str] = "pause"
    allowed_from: ClassVar[frozenset[str]] = frozenset({ACTIVE})
    event_type: ClassVar[str] = events.SUBSCRIPTION_PAUSED

    def __post_init__(self):
        if self.resume_at.tzinfo is None:
            raise InvalidPauseDate("resume date must include a timezone", operation=self.operation)
        if self.resume_at <= datetime.now(timezone.utc):
            raise InvalidPauseDate("resume date must be in the future", operation=self.operation)

    def call_processor(self, processor, external_id):
        return processor.pause_subscription(external_id, resumes_at=self.resume_at)

    def changes(self, current, result):
        return Changes(
            status=PAUSED,
            pause_until=self.resume_at,
            price_ref=current.price_ref,
            cancel_at_period_end=current.cancel_at_period_end,
            current_period_end=_period_end(current, result),
        )

    def event_payload(self):
        return {"pause_until": self.resume_at.isoformat()}


@dataclass(frozen=True)
class Resume(SubscriptionCommand):
    """Resume billing now, regardless of the original pause date."""

    operation: ClassVar[str] = "resume"
    allowed_from: ClassVar[frozenset[str]] = frozenset({PAUSED})
    event_type: ClassVar[str] = events.SUBSCRIPTION_RESUMED

    def call_processor(self, processor, external_id):
        return processor.resume_subscription(external_id)

    def changes(self, current, result):
        return Changes(
            status=ACTIVE,
            pause_until=None,
            price_ref=current.price_ref,
            cancel_at_period_end=current.cancel_at_period_end,
            current_period_end=_period_end(current, result),
        )


@dataclass(frozen=True)
class Cancel(SubscriptionCommand):
    """
    Always cancels at the end of the current billing period. The status is
    left as-is; the record becomes canceled when the processor reports the
    period ended. Never switch this to immediate cancellation.
    """

    operation: ClassVar[str] = "cancel"
    allowed_from: ClassVar[frozenset[str]] = frozenset({ACTIVE, PAUSED, PAST_DUE})
    event_type: ClassVar[str] = events.SUBSCRIPTION_CANCEL_SCHEDULED

    def call_processor(self, processor, external_id):
        return processor.cancel_subscription_at_period_end(external_id)

    def changes(self, current, result):
        return Changes(
            status=current.status,
            pause_until=current.pause_until,
            price_ref=current.price_ref,
            cancel_at_period_end=True,
            current_period_end=_period_end(current, result),
        )
