# app/invoices/service.py
"""
Invoice intake, driven by processor webhooks.

A paid invoice records the charge on the subscription (refunds are checked
against it), pays the creator their share, activates the creator's pending
referral on their first paid invoice and accrues referral commission. Webhooks are
delivered at least once, so every step here is safe to replay.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from app.referrals import attributor
from app.subscriptions import repository as subscriptions
from app.subscriptions import service as lifecycle
from app.subscriptions.model import PAST_DUE, PAUSED, Subscription
from app.transfers import repository as failed_transfers
from app.transfers import service as transfers
from app.transfers.model import KIND_CREATOR_EARNINGS, TransferOutcome
from services.errors import NotFound
from settings import settings

logger = logging.getLogger("creatorpay.invoices")


@dataclass(frozen=True)
class PaidInvoice:
    external_subscription_id: str
    invoice_id: str
    amount_paid_cents: int
    currency: str
    paid_at: datetime
    period_end: Optional[datetime] = None


def creator_share(amount_cents: int, fee_percent: Optional[float] = None) -> int:
    fee = Decimal(str(settings.PLATFORM_FEE_PERCENT if fee_percent is None else fee_percent))
    share = Decimal(int(amount_cents)) * (Decimal(100) - fee) / Decimal(100)
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def handle_invoice_paid(conn, invoice: PaidInvoice) -> Optional[TransferOutcome]:
    row = subscriptions.get_by_external_id(conn, invoice.external_subscription_id)
    if not row:
        # subscription.created not seen yet; failing makes the processor redeliver
        raise NotFound(
            "paid invoice for unknown subscription",
            entity_id=invoice.external_subscription_id,
            operation="invoice.paid",
        )
    sub = Subscription.from_row(row)

    subscriptions.record_charge(
        conn,
        subscription_id=sub.id,
        invoice_id=invoice.invoice_id,
        amount_cents=invoice.amount_paid_cents,
        current_period_end=invoice.period_end,
    )
    if sub.status in (PAST_DUE, PAUSED):
        # a paid invoice means collection is running again
        lifecycle.sync_from_processor(
            conn,
            external_subscription_id=invoice.external_subscription_id,
            processor_status="active",
            current_period_end=invoice.period_end,
            processor_paused=False,
        )

    share = creator_share(invoice.amount_paid_cents)
    outcome = _pay_creator(conn, sub, invoice, share)

    attributor.activate_referral(conn, referred_creator_id=sub.creator_id, at=invoice.paid_at)
    attributor.attribute_revenue(
        conn,
        referred_creator_id=sub.creator_id,
        revenue_cents=share,
        currency=invoice.currency,
        earned_at=invoice.paid_at,
        source_ref=f"invoice:{invoice.invoice_id}",
    )
    return outcome


def _pay_creator(conn, sub: Subscription, invoice: PaidInvoice, share: int) -> Optional[TransferOutcome]:
    if share <= 0:
        return None

    # replayed webhook: a record for this cycle already exists, the retry engine owns it
    existing = failed_transfers.get_for_invoice(conn, subscription_id=sub.id, invoice_id=invoice.invoice_id)
    if existing:
        logger.info("invoice transfer already tracked invoice=%s failed_transfer=%s", invoice.invoice_id, existing["id"])
        return TransferOutcome(failed_transfer_id=str(existing["id"]), error=existing.get("error_message"))

    return transfers.send_or_record(
        conn,
        recipient_id=sub.creator_id,
        kind=KIND_CREATOR_EARNINGS,
        amount_cents=share,
        currency=invoice.currency,
        idempotency_key=f"invoice-transfer-{invoice.invoice_id}",
        description=f"Creator earnings for invoice {invoice.invoice_id}",
        subscription_id=sub.id,
        invoice_id=invoice.invoice_id,
        metadata={"subscription_id": sub.id, "invoice_id": invoice.invoice_id},
    )


def handle_invoice_failed(conn, *, external_subscription_id: str, invoice_id: str) -> Optional[Subscription]:
    logger.info("invoice payment failed ext=%s invoice=%s", external_subscription_id, invoice_id)
    return lifecycle.sync_from_processor(
        conn,
        external_subscription_id=external_subscription_id,
        processor_status="past_due",
    )


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
