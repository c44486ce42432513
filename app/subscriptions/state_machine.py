# app/subscriptions/state_machine.py
from __future__ import annotations

from app.subscriptions.model import ACTIVE, CANCELED, PAST_DUE, PAUSED
from services.errors import InvalidTransition


ALLOWED = {
    # X -> X covers in-place changes (price change, cancel-at-period-end flag)
    ACTIVE: {ACTIVE, PAUSED, CANCELED, PAST_DUE},
    PAUSED: {PAUSED, ACTIVE, CANCELED},
    PAST_DUE: {PAST_DUE, ACTIVE, CANCELED},
    CANCELED: set(),
}


def can_transition(old: str, new: str) -> bool:
    return new in ALLOWED.get(old, set())


def assert_transition(old: str, new: str, *, subscription_id: str | None = None) -> None:
    if not can_transition(old, new):
        raise InvalidTransition(
            f"Illegal subscription transition: {old} -> {new}",
            entity_id=subscription_id,
            operation="subscription.transition",
        )

