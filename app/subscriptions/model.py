from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from datetime import datetime

ACTIVE = "active"
PAUSED = "paused"
PAST_DUE = "past_due"
CANCELED = "canceled"

STATUSES = (ACTIVE, PAUSED, PAST_DUE, CANCELED)


@dataclass(frozen=True)
class Subscription:
    id: str
    subscriber_id: str
    creator_id: str
    external_subscription_id: Optional[str]
    status: str
    pause_until: Optional[datetime]
    price_ref: Optional[str]
    cancel_at_period_end: bool
    current_period_end: Optional[datetime]
    last_charge_amount_cents: Optional[int]
    last_invoice_id: Optional[str]

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Subscription":
        return cls(
            id=str(row["id"]),
            subscriber_id=str(row["subscriber_id"]),
            creator_id=str(row["creator_id"]),
            external_subscription_id=row.get("external_subscription_id"),
            status=row["status"],
            pause_until=row.get("pause_until"),
            price_ref=row.get("price_ref"),
            cancel_at_period_end=bool(row.get("cancel_at_period_end")),
            current_period_end=row.get("current_period_end"),
            last_charge_amount_cents=row.get("last_charge_amount_cents"),
            last_invoice_id=row.get("last_invoice_id"),
        )
