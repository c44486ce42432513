# routes/refunds.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.refunds import adjudicator
from app.refunds.model import RefundRequest
from db import get_conn
from deps.admin import require_admin
from deps.auth import get_current_user, CurrentUser
from services.errors import CreatorPayError, raise_http_from_domain_error

router = APIRouter(prefix="/v1", tags=["refunds"])


class RefundIn(BaseModel):
    subscription_id: UUID
    amount_cents: int = Field(gt=0)
    reason: Optional[str] = Field(default=None, max_length=2000)


class RefundDecisionIn(BaseModel):
    approve: bool
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class RefundOut(BaseModel):
    id: str
    subscription_id: str
    amount_cents: int
    status: str
    reason: Optional[str] = None
    external_refund_id: Optional[str] = None
    admin_notes: Optional[str] = None
    decided_at: Optional[datetime] = None

    @classmethod
    def of(cls, req: RefundRequest) -> "RefundOut":
        return cls(
            id=req.id,
            subscription_id=req.subscription_id,
            amount_cents=req.amount_cents,
            status=req.status,
            reason=req.reason,
            external_refund_id=req.external_refund_id,
            admin_notes=req.admin_notes,
            decided_at=req.decided_at,
        )


@router.post("/refunds", response_model=RefundOut, status_code=201)
def submit_refund(body: RefundIn, user: CurrentUser = Depends(get_current_user)):
    try:
        with get_conn() as conn:
            req = adjudicator.submit(
                conn,
                user_id=str(user.user_id),
                subscription_id=str(body.subscription_id),
                amount_cents=body.amount_cents,
                reason=body.reason,
            )
    except CreatorPayError as e:
        raise_http_from_domain_error(e)
    return RefundOut.of(req)


@router.post("/admin/refunds/{request_id}/decision", response_model=RefundOut)
def decide_refund(request_id: UUID, body: RefundDecisionIn, admin: CurrentUser = Depends(require_admin)):
    try:
        with get_conn() as conn:
            req = adjudicator.decide(
                conn,
                request_id=str(request_id),
                admin_id=str(admin.user_id),
                approve=body.approve,
                admin_notes=body.admin_notes,
            )
    except CreatorPayError as e:
        raise_http_from_domain_error(e)
    return RefundOut.of(req)
