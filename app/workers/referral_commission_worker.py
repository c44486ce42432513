# app/workers/referral_commission_worker.py
"""
Scheduled referral commission run:
  1. expire referrals whose window has elapsed;
  2. pay every referrer whose unpaid commission reached the threshold.
A payout that cannot be transferred is parked as a FailedTransfer and from
then on belongs to the transfer retry engine.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

from db import get_conn
from app.referrals import attributor, repository
from app.referrals.model import PAYOUT_PARKED, PAYOUT_SENT, PayableBalance
from app.transfers import service as transfers
from app.transfers.model import KIND_REFERRAL_COMMISSION
from services import events
from services.observability import new_run_id, set_request_id
from settings import settings

logger = logging.getLogger("creatorpay.referral_commissions")


def process_once(*, threshold_cents: Optional[int] = None, limit: int = 100) -> dict[str, int]:
    threshold = settings.REFERRAL_PAYOUT_THRESHOLD_CENTS if threshold_cents is None else threshold_cents
    set_request_id(new_run_id("referral-commission"))

    with get_conn() as conn:
        expired = attributor.expire_referrals(conn)
        balances = [
            PayableBalance(referrer_id=str(r["referrer_id"]), currency=r["currency"], total_cents=int(r["total_cents"]))
            for r in repository.list_payable(conn, threshold_cents=threshold, limit=limit)
        ]

    summary: Counter[str] = Counter()
    for balance in balances:
        with get_conn() as conn:
            summary[pay_referrer(conn, balance, threshold)] += 1

    result = {"expired": expired, "payable": len(balances), **summary}
    logger.info("referral commission run done %s", result)
    return result


def pay_referrer(conn, balance: PayableBalance, threshold: int) -> str:
    payout_id = repository.create_payout(conn, referrer_id=balance.referrer_id, currency=balance.currency)
    total = repository.claim_commissions(
        conn, payout_id=payout_id, referrer_id=balance.referrer_id, currency=balance.currency,
    )
    if total < threshold:
        # an overlapping run claimed part of the balance
        repository.release_payout(conn, payout_id=payout_id)
        logger.info("referral payout skipped referrer=%s claimed=%s", balance.referrer_id, total)
        return "skipped"

    outcome = transfers.send_or_record(
        conn,
        recipient_id=balance.referrer_id,
        kind=KIND_REFERRAL_COMMISSION,
        amount_cents=total,
        currency=balance.currency,
        idempotency_key=f"referral-payout-{payout_id}",
        description=f"Referral commission payout {payout_id}",
        referral_payout_id=payout_id,
        metadata={"referral_payout_id": payout_id},
    )

    if outcome.sent:
        repository.finish_payout(conn, payout_id=payout_id, status=PAYOUT_SENT, external_transfer_id=outcome.transfer_id)
        events.emit_event(
            conn,
            events.REFERRAL_PAYOUT_SENT,
            entity_type="referral_payout",
            entity_id=payout_id,
            payload={
                "referrer_id": balance.referrer_id,
                "amount_cents": total,
                "currency": balance.currency,
                "transfer_id": outcome.transfer_id,
            },
        )
        return "sent"

    repository.finish_payout(conn, payout_id=payout_id, status=PAYOUT_PARKED, failed_transfer_id=outcome.failed_transfer_id)
    logger.warning(
        "referral payout parked referrer=%s payout=%s failed_transfer=%s",
        balance.referrer_id, payout_id, outcome.failed_transfer_id,
    )
    return "parked"

