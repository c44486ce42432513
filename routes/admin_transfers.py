from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.transfers import repository
from app.transfers.model import FailedTransfer
from app.transfers.retry_policy import RetryPolicy
from db import get_conn
from deps.admin import require_admin
from deps.auth import CurrentUser


router = APIRouter(prefix="/v1/admin/transfers", tags=["admin-transfers"])


def _item(ft: FailedTransfer, policy: RetryPolicy) -> dict:
    return {
        "id": ft.id,
        "creator_id": ft.creator_id,
        "kind": ft.kind,
        "amount_cents": ft.amount_cents,
        "currency": ft.currency,
        "error_message": ft.error_message,
        "retry_count": ft.retry_count,
        "last_retry_at": ft.last_retry_at,
        "exhausted": policy.exhausted(ft.retry_count),
        "subscription_id": ft.subscription_id,
        "invoice_id": ft.invoice_id,
        "created_at": ft.created_at,
    }


@router.get("/failed")
def list_failed_transfers(
    exhausted: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    admin: CurrentUser = Depends(require_admin),
):
    policy = RetryPolicy.from_settings()
    with get_conn() as conn:
        rows = repository.list_unresolved(
            conn, exhausted_only=exhausted, max_attempts=policy.max_attempts, limit=limit,
        )
    items = [_item(FailedTransfer.from_row(r), policy) for r in rows]
    return {"transfers": items, "count": len(items), "exhausted_only": exhausted}

