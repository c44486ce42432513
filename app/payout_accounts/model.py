from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from datetime import datetime


@dataclass(frozen=True)
class CreatorPayoutAccount:
    creator_id: str
    external_account_id: Optional[str]
    onboarding_complete: bool
    payouts_enabled: bool
    charges_enabled: bool
    status_refreshed_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CreatorPayoutAccount":
        return cls(
            creator_id=str(row["creator_id"]),
            external_account_id=row.get("external_account_id"),
            onboarding_complete=bool(row.get("onboarding_complete")),
            payouts_enabled=bool(row.get("payouts_enabled")),
            charges_enabled=bool(row.get("charges_enabled")),
            status_refreshed_at=row.get("status_refreshed_at"),
        )


@dataclass(frozen=True)
class PayoutAccountStatus:
    """
    What callers see. `connected=False` is a normal answer, not an error:
    the creator simply has not started payout setup yet.
    `refreshed_at` is when the flags were last confirmed by the processor.
    """
    creator_id: str
    connected: bool
    onboarding_complete: bool = False
    payouts_enabled: bool = False
    charges_enabled: bool = False
    account_id: Optional[str] = None
    refreshed_at: Optional[datetime] = None

    @classmethod
    def not_connected(cls, creator_id: str) -> "PayoutAccountStatus":
        return cls(creator_id=creator_id, connected=False)


@dataclass(frozen=True)
class OnboardingResult:
    creator_id: str
    account_id: str
    url: str
    created: bool
