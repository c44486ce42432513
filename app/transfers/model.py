from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Any
from datetime import datetime

KIND_CREATOR_EARNINGS = "creator_earnings"
KIND_REFERRAL_COMMISSION = "referral_commission"


@dataclass(frozen=True)
class FailedTransfer:
    id: str
    creator_id: str
    kind: str
    amount_cents: int
    currency: str
    error_message: Optional[str]
    retry_count: int
    last_retry_at: Optional[datetime]
    resolved_at: Optional[datetime]
    external_transfer_id: Optional[str]
    subscription_id: Optional[str]
    invoice_id: Optional[str]
    referral_payout_id: Optional[str]
    created_at: Optional[datetime]
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "FailedTransfer":
        return cls(
            id=str(row["id"]),
            creator_id=str(row["creator_id"]),
            kind=row.get("kind") or KIND_CREATOR_EARNINGS,
            amount_cents=int(row["amount_cents"]),
            currency=row["currency"],
            error_message=row.get("error_message"),
            retry_count=int(row.get("retry_count") or 0),
            last_retry_at=row.get("last_retry_at"),
            resolved_at=row.get("resolved_at"),
            external_transfer_id=row.get("external_transfer_id"),
            subscription_id=str(row["subscription_id"]) if row.get("subscription_id") else None,
            invoice_id=row.get("invoice_id"),
            referral_payout_id=str(row["referral_payout_id"]) if row.get("referral_payout_id") else None,
            created_at=row.get("created_at"),
            metadata=dict(row.get("metadata") or {}),
        )


@dataclass(frozen=True)
class TransferOutcome:
    """Result of a first payout attempt: either sent, or parked for retry."""
    transfer_id: Optional[str] = None
    failed_transfer_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.transfer_id is not None
