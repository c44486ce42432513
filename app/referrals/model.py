from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from datetime import datetime

PENDING = "pending"
ACTIVE = "active"
EXPIRED = "expired"

PAYOUT_PENDING = "pending"
PAYOUT_SENT = "sent"
# transfer handed to the retry engine as a FailedTransfer
PAYOUT_PARKED = "parked"


@dataclass(frozen=True)
class CreatorReferral:
    id: str
    referrer_id: str
    referred_creator_id: str
    status: str
    activated_at: Optional[datetime]
    expires_at: Optional[datetime]
    commission_earned_cents: int
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CreatorReferral":
        return cls(
            id=str(row["id"]),
            referrer_id=str(row["referrer_id"]),
            referred_creator_id=str(row["referred_creator_id"]),
            status=row["status"],
            activated_at=row.get("activated_at"),
            expires_at=row.get("expires_at"),
            commission_earned_cents=int(row.get("commission_earned_cents") or 0),
            created_at=row.get("created_at"),
        )

    def earns_at(self, at: datetime) -> bool:
        """Window is [activated_at, expires_at). Judged by when revenue was earned."""
        if self.activated_at is None or self.expires_at is None:
            return False
        return self.activated_at <= at < self.expires_at


@dataclass(frozen=True)
class PayableBalance:
    referrer_id: str
    currency: str
    total_cents: int
