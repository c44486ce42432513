# routes/payout_accounts.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.payout_accounts import connector
from app.payout_accounts.model import PayoutAccountStatus
from db import get_conn
from deps.auth import get_current_user, CurrentUser
from services.errors import CreatorPayError, raise_http_from_domain_error

router = APIRouter(prefix="/v1/creators/me/payout-account", tags=["payout-accounts"])


class OnboardingResponse(BaseModel):
    account_id: str
    url: str
    created: bool


class PayoutAccountStatusResponse(BaseModel):
    connected: bool
    onboarding_complete: bool
    payouts_enabled: bool
    charges_enabled: bool
    account_id: Optional[str] = None
    refreshed_at: Optional[datetime] = None


def _status_response(status: PayoutAccountStatus) -> PayoutAccountStatusResponse:
    return PayoutAccountStatusResponse(
        connected=status.connected,
        onboarding_complete=status.onboarding_complete,
        payouts_enabled=status.payouts_enabled,
        charges_enabled=status.charges_enabled,
        account_id=status.account_id,
        refreshed_at=status.refreshed_at,
    )


@router.post("/onboarding", response_model=OnboardingResponse)
def start_onboarding(user: CurrentUser = Depends(get_current_user)):
    try:
        with get_conn() as conn:
            result = connector.initiate_onboarding(conn, str(user.user_id))
    except CreatorPayError as e:
        raise_http_from_domain_error(e)
    return OnboardingResponse(account_id=result.account_id, url=result.url, created=result.created)


@router.get("", response_model=PayoutAccountStatusResponse)
def get_payout_account(user: CurrentUser = Depends(get_current_user)):
    # display only; anything that moves money refreshes first
    try:
        with get_conn() as conn:
            status = connector.get_status(conn, str(user.user_id))
    except CreatorPayError as e:
        raise_http_from_domain_error(e)
    return _status_response(status)


@router.post("/refresh", response_model=PayoutAccountStatusResponse)
def refresh_payout_account(user: CurrentUser = Depends(get_current_user)):
    try:
        with get_conn() as conn:
            status = connector.refresh_status(conn, str(user.user_id))
    except CreatorPayError as e:
        raise_http_from_domain_error(e)
    return _status_response(status)
