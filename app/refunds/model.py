from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from datetime import datetime

PENDING = "pending"
PROCESSED = "processed"
REJECTED = "rejected"

TERMINAL = {PROCESSED, REJECTED}


@dataclass(frozen=True)
class RefundRequest:
    id: str
    user_id: str
    subscription_id: str
    amount_cents: int
    reason: Optional[str]
    status: str
    external_refund_id: Optional[str] = None
    admin_notes: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RefundRequest":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            subscription_id=str(row["subscription_id"]),
            amount_cents=int(row["amount_cents"]),
            reason=row.get("reason"),
            status=row["status"],
            external_refund_id=row.get("external_refund_id"),
            admin_notes=row.get("admin_notes"),
            decided_by=str(row["decided_by"]) if row.get("decided_by") else None,
            decided_at=row.get("decided_at"),
            created_at=row.get("created_at"),
        )
