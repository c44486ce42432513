# routes/subscriptions.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.subscriptions import service
from app.subscriptions.commands import Cancel, ChangePrice, Pause, Resume, SubscriptionCommand
from app.subscriptions.model import Subscription
from db import get_conn
from deps.auth import get_current_user, CurrentUser
from services.errors import CreatorPayError, raise_http_from_domain_error

router = APIRouter(prefix="/v1/subscriptions", tags=["subscriptions"])


class ChangePriceIn(BaseModel):
    new_price_ref: str = Field(min_length=1, max_length=255)

    def to_command(self) -> SubscriptionCommand:
        return ChangePrice(new_price_ref=self.new_price_ref)


class PauseIn(BaseModel):
    resume_at: datetime

    def to_command(self) -> SubscriptionCommand:
        return Pause(resume_at=self.resume_at)


class SubscriptionOut(BaseModel):
    id: str
    creator_id: str
    status: str
    price_ref: Optional[str] = None
    pause_until: Optional[datetime] = None
    cancel_at_period_end: bool
    current_period_end: Optional[datetime] = None

    @classmethod
    def of(cls, sub: Subscription) -> "SubscriptionOut":
        return cls(
            id=sub.id,
            creator_id=sub.creator_id,
            status=sub.status,
            price_ref=sub.price_ref,
            pause_until=sub.pause_until,
            cancel_at_period_end=sub.cancel_at_period_end,
            current_period_end=sub.current_period_end,
        )


def _run(user: CurrentUser, creator_id: UUID, build) -> SubscriptionOut:
    try:
        command = build()
        with get_conn() as conn:
            sub = service.apply_command(
                conn,
                subscriber_id=str(user.user_id),
                creator_id=str(creator_id),
                command=command,
            )
    except CreatorPayError as e:
        raise_http_from_domain_error(e)
    return SubscriptionOut.of(sub)


@router.post("/{creator_id}/change-price", response_model=SubscriptionOut)
def change_price(creator_id: UUID, body: ChangePriceIn, user: CurrentUser = Depends(get_current_user)):
    return _run(user, creator_id, body.to_command)


@router.post("/{creator_id}/pause", response_model=SubscriptionOut)
def pause(creator_id: UUID, body: PauseIn, user: CurrentUser = Depends(get_current_user)):
    return _run(user, creator_id, body.to_command)


@router.post("/{creator_id}/resume", response_model=SubscriptionOut)
def resume(creator_id: UUID, user: CurrentUser = Depends(get_current_user)):
    return _run(user, creator_id, Resume)


@router.post("/{creator_id}/cancel", response_model=SubscriptionOut)
def cancel(creator_id: UUID, user: CurrentUser = Depends(get_current_user)):
    return _run(user, creator_id, Cancel)
