# app/referrals/attributor.py
"""
Referral Commission Attributor.

pending -> active on the referred creator's activity milestone (first paid
invoice); the commission window opens at activation, not at signup, and
lasts REFERRAL_WINDOW_MONTHS calendar months. Attribution is judged by when
the revenue was earned, not when the event is processed: a late event for
revenue earned inside the window still counts after the referral expired.
"""
from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from app.referrals import repository
from app.referrals.model import ACTIVE, EXPIRED, PENDING, CreatorReferral
from services import events
from settings import settings

logger = logging.getLogger("creatorpay.referrals")

ENTITY = "referral"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar months; the day is clamped to the target month's length (Jan 31 + 1 = Feb 28/29)."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def compute_commission(revenue_cents: int, percent: Optional[float] = None) -> int:
    pct = Decimal(str(settings.REFERRAL_COMMISSION_PERCENT if percent is None else percent))
    amount = Decimal(int(revenue_cents)) * pct / Decimal(100)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def register_referral(conn, *, referrer_id: str, referred_creator_id: str) -> Optional[CreatorReferral]:
    if referrer_id == referred_creator_id:
        logger.warning("self referral ignored creator=%s", referrer_id)
        return None
    row = repository.insert_referral(conn, referrer_id=referrer_id, referred_creator_id=referred_creator_id)
    if row is None:
        logger.info("referral already exists referred=%s", referred_creator_id)
        return None
    logger.info("referral registered referrer=%s referred=%s", referrer_id, referred_creator_id)
    return CreatorReferral.from_row(row)


def activate_referral(conn, *, referred_creator_id: str, at: Optional[datetime] = None) -> Optional[CreatorReferral]:
    """Returns the activated referral, or None if there was nothing pending to activate."""
    row = repository.get_by_referred_creator(conn, referred_creator_id)
    if not row or row["status"] != PENDING:
        return None

    activated_at = at or _utcnow()
    expires_at = add_months(activated_at, settings.REFERRAL_WINDOW_MONTHS)
    if not repository.activate(conn, referral_id=str(row["id"]), activated_at=activated_at, expires_at=expires_at):
        logger.info("referral activation lost race referral=%s", row["id"])
        return None

    events.emit_event(
        conn,
        events.REFERRAL_ACTIVATED,
        entity_type=ENTITY,
        entity_id=str(row["id"]),
        payload={
            "referrer_id": str(row["referrer_id"]),
            "referred_creator_id": referred_creator_id,
            "activated_at": activated_at.isoformat(),
            "expires_at": expires_at.isoformat(),
        },
    )
    logger.info("referral activated referral=%s expires_at=%s", row["id"], expires_at.isoformat())
    return CreatorReferral.from_row({**row, "status": ACTIVE, "activated_at": activated_at, "expires_at": expires_at})


def attribute_revenue(
    conn,
    *,
    referred_creator_id: str,
    revenue_cents: int,
    currency: str,
    earned_at: datetime,
    source_ref: str,
) -> int:
    """
    Accrue commission for one revenue event. Returns the commission in cents;
    0 when there is no referral, the revenue falls outside the window, or the
    event was already attributed.
    """
    row = repository.get_by_referred_creator(conn, referred_creator_id)
    if not row or row["status"] not in (ACTIVE, EXPIRED):
        return 0

    referral = CreatorReferral.from_row(row)
    if not referral.earns_at(earned_at):
        logger.info(
            "revenue outside commission window referral=%s earned_at=%s window=[%s, %s)",
            referral.id, earned_at.isoformat(), referral.activated_at, referral.expires_at,
        )
        return 0

    commission = compute_commission(revenue_cents)
    if commission <= 0:
        return 0

    inserted = repository.insert_commission(
        conn,
        referral_id=referral.id,
        referrer_id=referral.referrer_id,
        source_ref=source_ref,
        revenue_cents=revenue_cents,
        commission_cents=commission,
        currency=currency,
        earned_at=earned_at,
    )
    if inserted is None:
        logger.info("commission already attributed source=%s", source_ref)
        return 0

    repository.add_commission_earned(conn, referral_id=referral.id, amount_cents=commission)
    logger.info(
        "commission attributed referral=%s referrer=%s source=%s commission_cents=%s",
        referral.id, referral.referrer_id, source_ref, commission,
    )
    return commission


def expire_referrals(conn, *, now: Optional[datetime] = None) -> int:
    expired = repository.expire_due(conn, now=now or _utcnow())
    for row in expired:
        events.emit_event(
            conn,
            events.REFERRAL_EXPIRED,
            entity_type=ENTITY,
            entity_id=str(row["id"]),
            payload={
                "referrer_id": str(row["referrer_id"]),
                "referred_creator_id": str(row["referred_creator_id"]),
                "commission_earned_cents": int(row.get("commission_earned_cents") or 0),
            },
        )
    if expired:
        logger.info("referrals expired count=%s", len(expired))
    return len(expired)
