# app/transfers/service.py
"""
First-attempt transfers to a creator (or referrer). Anything that does not go
out immediately is parked as a FailedTransfer for the retry engine.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from app.payout_accounts import connector
from app.providers.factory import get_processor
from app.transfers import repository
from app.transfers.model import TransferOutcome
from services import events
from services.errors import CreatorPayError, ProcessorError
from services.redaction import redact_text

logger = logging.getLogger("creatorpay.transfers")

ENTITY = "failed_transfer"


def send_or_record(
    conn,
    *,
    recipient_id: str,
    kind: str,
    amount_cents: int,
    currency: str,
    idempotency_key: str,
    description: str,
    subscription_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
    referral_payout_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> TransferOutcome:
    meta = {k: str(v) for k, v in (metadata or {}).items()}

    error: Optional[str] = None
    try:
        status = connector.require_payouts_enabled(conn, recipient_id)
    except CreatorPayError as e:
        error = e.message

    if error is None:
        try:
            tr = get_processor().create_transfer(
                amount_cents=amount_cents,
                currency=currency,
                destination=status.account_id,
                idempotency_key=idempotency_key,
                description=description,
                metadata=meta,
            )
        except ProcessorError as e:
            error = e.message
            meta.update({"error_code": str(e.code), "retryable": str(e.retryable)})
        else:
            logger.info(
                "transfer sent recipient=%s kind=%s amount_cents=%s transfer=%s",
                recipient_id, kind, amount_cents, tr.transfer_id,
            )
            return TransferOutcome(transfer_id=tr.transfer_id)

    logger.warning(
        "transfer failed recipient=%s kind=%s amount_cents=%s error=%s",
        recipient_id, kind, amount_cents, redact_text(error),
    )
    row = repository.insert_failed_transfer(
        conn,
        creator_id=recipient_id,
        kind=kind,
        amount_cents=amount_cents,
        currency=currency,
        error_message=error,
        subscription_id=subscription_id,
        invoice_id=invoice_id,
        referral_payout_id=referral_payout_id,
        metadata=meta,
    )
    if row is None:
        logger.info("failed transfer already recorded subscription=%s invoice=%s", subscription_id, invoice_id)
        return TransferOutcome(error=error)

    events.emit_event(
        conn,
        events.TRANSFER_FAILED,
        entity_type=ENTITY,
        entity_id=str(row["id"]),
        payload={"creator_id": recipient_id, "amount_cents": amount_cents, "currency": currency, "error": error},
    )
    return TransferOutcome(failed_transfer_id=str(row["id"]), error=error)
