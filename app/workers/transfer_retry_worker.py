# app/workers/transfer_retry_worker.py
"""
Transfer Retry Engine. Runs on a schedule, never on demand from a user.

Per run:
  1. list up to N unresolved failed transfers under the retry cap and past
     their backoff, oldest first;
  2. per record (sequentially, one transaction each, row locked with SKIP
     LOCKED so overlapping runs never double-process):
       - re-check the recipient's payouts flag through the connector; still
         disabled => skip without spending an attempt;
       - retry the transfer;
       - success => resolved_at + transfer id; failure => retry_count + 1.
A record that reaches the cap stays unresolved and is never selected again;
it is surfaced to operators instead.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

from db import get_conn
from app.payout_accounts import connector
from app.providers.factory import get_processor
from app.transfers import repository
from app.transfers.model import FailedTransfer
from app.transfers.retry_policy import RetryPolicy
from services import events
from services.errors import CreatorPayError, PayoutsNotEnabled, ProcessorError
from services.observability import new_run_id, set_request_id
from services.redaction import redact_text
from settings import settings

logger = logging.getLogger("creatorpay.transfer_retry")

ENTITY = "failed_transfer"

RESOLVED = "resolved"
FAILED = "failed"
EXHAUSTED = "exhausted"
SKIPPED_DISABLED = "skipped_payouts_disabled"
SKIPPED_STATUS_ERROR = "skipped_status_error"
SKIPPED_LOCKED = "skipped_locked"


def process_once(*, batch_size: Optional[int] = None, policy: Optional[RetryPolicy] = None) -> dict[str, int]:
    policy = policy or RetryPolicy.from_settings()
    limit = batch_size or settings.TRANSFER_RETRY_BATCH_SIZE
    set_request_id(new_run_id("transfer-retry"))

    with get_conn() as conn:
        ids = repository.list_due_ids(
            conn,
            batch_size=limit,
            max_attempts=policy.max_attempts,
            base_backoff_s=policy.base_backoff_s,
        )

    logger.info("transfer retry run found=%s", len(ids))
    summary: Counter[str] = Counter()

    for transfer_id in ids:
        with get_conn() as conn:
            row = repository.lock_for_retry(conn, transfer_id, max_attempts=policy.max_attempts)
            if row is None:
                summary[SKIPPED_LOCKED] += 1
                continue
            outcome = retry_one(conn, FailedTransfer.from_row(row), policy)
        summary[outcome] += 1
        if outcome == EXHAUSTED:
            summary[FAILED] += 1

    result = {"processed": len(ids), **summary}
    logger.info("transfer retry run done %s", result)
    return result


def retry_one(conn, ft: FailedTransfer, policy: RetryPolicy) -> str:
    try:
        status = connector.require_payouts_enabled(conn, ft.creator_id)
    except PayoutsNotEnabled:
        logger.info("skip transfer=%s: payouts not enabled for creator=%s", ft.id, ft.creator_id)
        return SKIPPED_DISABLED
    except CreatorPayError as e:
        logger.warning("skip transfer=%s: status check failed (%s)", ft.id, redact_text(e.message))
        return SKIPPED_STATUS_ERROR

    attempt = ft.retry_count + 1
    try:
        tr = get_processor().create_transfer(
            amount_cents=ft.amount_cents,
            currency=ft.currency,
            destination=status.account_id,
            # one key per attempt: a replayed key would replay the earlier failure
            idempotency_key=f"failed-transfer-{ft.id}-attempt-{attempt}",
            description=f"Retry of failed transfer {ft.id}" + (f" for invoice {ft.invoice_id}" if ft.invoice_id else ""),
            metadata={"failed_transfer_id": ft.id, "attempt": str(attempt), "kind": ft.kind},
        )
    except ProcessorError as e:
        return _record_failure(conn, ft, policy, e.message)

    if not repository.mark_resolved(
        conn,
        transfer_id=ft.id,
        expected_retry_count=ft.retry_count,
        external_transfer_id=tr.transfer_id,
    ):
        # row is locked by this transaction, so this means the record changed shape under the lock
        logger.error("transfer=%s sent as %s but record was not updatable", ft.id, tr.transfer_id)
        return SKIPPED_LOCKED

    events.emit_event(
        conn,
        events.TRANSFER_RESOLVED,
        entity_type=ENTITY,
        entity_id=ft.id,
        payload={
            "creator_id": ft.creator_id,
            "amount_cents": ft.amount_cents,
            "currency": ft.currency,
            "transfer_id": tr.transfer_id,
            "attempt": attempt,
        },
    )
    logger.info("transfer=%s resolved attempt=%s transfer_id=%s", ft.id, attempt, tr.transfer_id)
    return RESOLVED


def _record_failure(conn, ft: FailedTransfer, policy: RetryPolicy, error_message: str) -> str:
    new_count = repository.record_retry_failure(
        conn,
        transfer_id=ft.id,
        expected_retry_count=ft.retry_count,
        error_message=error_message,
        max_attempts=policy.max_attempts,
    )
    if new_count is None:
        logger.error("transfer=%s retry failure not recorded (record moved)", ft.id)
        return SKIPPED_LOCKED

    logger.warning("transfer=%s retry %s/%s failed: %s", ft.id, new_count, policy.max_attempts, redact_text(error_message))

    if not policy.exhausted(new_count):
        return FAILED

    logger.error(
        "transfer=%s exhausted %s retries; needs manual intervention creator=%s amount_cents=%s",
        ft.id, new_count, ft.creator_id, ft.amount_cents,
    )
    events.emit_event(
        conn,
        events.TRANSFER_RETRIES_EXHAUSTED,
        entity_type=ENTITY,
        entity_id=ft.id,
        payload={
            "creator_id": ft.creator_id,
            "amount_cents": ft.amount_cents,
            "currency": ft.currency,
            "retry_count": new_count,
            "error": error_message,
        },
    )
    return EXHAUSTED

