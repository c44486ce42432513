# app/refunds/adjudicator.py
"""
Refund Adjudicator.

submit: subscriber asks for (part of) their last charge back. The amount is
checked against the charge recorded by invoice intake before anything is
sent to the processor.

decide: admin approves (refund is issued against the subscription's most
recent charge) or rejects (notes mandatory). Either way the request is
terminal afterwards.
"""
from __future__ import annotations

import logging
from typing import Optional

from app.providers.factory import get_processor
from app.refunds import repository
from app.refunds.model import PENDING, RefundRequest
from app.subscriptions import repository as subscriptions
from services import events
from services.audit_log import write_audit_log
from services.errors import (
    AdminNotesRequired,
    InvalidCommand,
    MissingExternalReference,
    NotFound,
    ProcessorError,
    RefundAlreadyDecided,
    RefundAmountExceeded,
    UnresolvableCharge,
    wrap_processor_error,
)

logger = logging.getLogger("creatorpay.refunds")

ENTITY = "refund_request"


def submit(conn, *, user_id: str, subscription_id: str, amount_cents: int, reason: Optional[str]) -> RefundRequest:
    if amount_cents <= 0:
        raise InvalidCommand("refund amount must be positive", entity_id=subscription_id, operation="refund.submit")

    sub = subscriptions.get_subscription(conn, subscription_id)
    if not sub or str(sub["subscriber_id"]) != str(user_id):
        raise NotFound("subscription not found", entity_id=subscription_id, operation="refund.submit")

    charge_cents = sub.get("last_charge_amount_cents")
    if charge_cents is None:
        charge_cents = _latest_charge(sub, operation="refund.submit").amount_cents

    if amount_cents > int(charge_cents):
        raise RefundAmountExceeded(
            f"requested {amount_cents} exceeds original charge {charge_cents}",
            entity_id=subscription_id,
            operation="refund.submit",
        )

    row = repository.insert_request(
        conn,
        user_id=user_id,
        subscription_id=subscription_id,
        amount_cents=amount_cents,
        reason=(reason or "").strip() or None,
    )
    events.emit_event(
        conn,
        events.REFUND_REQUESTED,
        entity_type=ENTITY,
        entity_id=str(row["id"]),
        payload={"user_id": user_id, "subscription_id": subscription_id, "amount_cents": amount_cents},
    )
    logger.info("refund requested id=%s sub=%s amount_cents=%s", row["id"], subscription_id, amount_cents)
    return RefundRequest.from_row(row)


def decide(conn, *, request_id: str, admin_id: str, approve: bool, admin_notes: Optional[str] = None) -> RefundRequest:
    row = repository.get_request(conn, request_id, for_update=True)
    if not row:
        raise NotFound("refund request not found", entity_id=request_id, operation="refund.decide")
    req = RefundRequest.from_row(row)
    if req.status != PENDING:
        raise RefundAlreadyDecided(
            f"refund request already {req.status}", entity_id=request_id, operation="refund.decide",
        )

    notes = (admin_notes or "").strip() or None
    if approve:
        return _approve(conn, req, admin_id=admin_id, notes=notes)
    return _reject(conn, req, admin_id=admin_id, notes=notes)


def _approve(conn, req: RefundRequest, *, admin_id: str, notes: Optional[str]) -> RefundRequest:
    sub = subscriptions.get_subscription(conn, req.subscription_id)
    if not sub:
        err = UnresolvableCharge(
            "refund request points at a missing subscription", entity_id=req.id, operation="refund.approve",
        )
        events.alert_operator(err, entity_type=ENTITY)
        raise err

    charge = _latest_charge(sub, operation="refund.approve")
    if req.amount_cents > charge.amount_cents:
        raise RefundAmountExceeded(
            f"requested {req.amount_cents} exceeds charge {charge.amount_cents}",
            entity_id=req.id,
            operation="refund.approve",
        )

    try:
        refund = get_processor().create_refund(
            payment_ref=charge.payment_ref,
            amount_cents=req.amount_cents,
            idempotency_key=f"refund-{req.id}",
        )
    except ProcessorError as e:
        logger.warning("refund failed at processor id=%s retryable=%s", req.id, e.retryable)
        raise wrap_processor_error(e, entity_id=req.id) from e

    if not repository.mark_processed(
        conn, request_id=req.id, external_refund_id=refund.refund_id, admin_id=admin_id, admin_notes=notes,
    ):
        raise RefundAlreadyDecided("refund request changed concurrently", entity_id=req.id, operation="refund.approve")

    write_audit_log(
        conn,
        actor_user_id=admin_id,
        action="refund.approve",
        target_type=ENTITY,
        target_id=req.id,
        metadata={
            "amount_cents": req.amount_cents,
            "refund_id": refund.refund_id,
            "invoice_id": charge.invoice_id,
            "notes": notes,
        },
    )
    events.emit_event(
        conn,
        events.REFUND_PROCESSED,
        entity_type=ENTITY,
        entity_id=req.id,
        payload={
            "user_id": req.user_id,
            "subscription_id": req.subscription_id,
            "amount_cents": req.amount_cents,
            "refund_id": refund.refund_id,
        },
    )
    logger.info("refund processed id=%s refund=%s amount_cents=%s", req.id, refund.refund_id, req.amount_cents)
    return RefundRequest.from_row(repository.get_request(conn, req.id))


def _reject(conn, req: RefundRequest, *, admin_id: str, notes: Optional[str]) -> RefundRequest:
    if not notes:
        raise AdminNotesRequired("admin notes are required to reject", entity_id=req.id, operation="refund.reject")

    if not repository.mark_rejected(conn, request_id=req.id, admin_id=admin_id, admin_notes=notes):
        raise RefundAlreadyDecided("refund request changed concurrently", entity_id=req.id, operation="refund.reject")

    write_audit_log(
        conn,
        actor_user_id=admin_id,
        action="refund.reject",
        target_type=ENTITY,
        target_id=req.id,
        metadata={"amount_cents": req.amount_cents, "notes": notes},
    )
    events.emit_event(
        conn,
        events.REFUND_REJECTED,
        entity_type=ENTITY,
        entity_id=req.id,
        payload={"user_id": req.user_id, "subscription_id": req.subscription_id, "notes": notes},
    )
    logger.info("refund rejected id=%s", req.id)
    return RefundRequest.from_row(repository.get_request(conn, req.id))


def _latest_charge(sub: dict, *, operation: str):
    sub_id = str(sub["id"])
    external_id = sub.get("external_subscription_id")
    if not external_id:
        err = MissingExternalReference(
            "subscription has no external subscription reference", entity_id=sub_id, operation=operation,
        )
        events.alert_operator(err, entity_type="subscription")
        raise err

    try:
        charge = get_processor().get_latest_charge(external_id)
    except ProcessorError as e:
        raise wrap_processor_error(e, entity_id=sub_id) from e

    if charge is None:
        err = UnresolvableCharge(
            "subscription has no resolvable charge", entity_id=sub_id, operation=operation,
        )
        events.alert_operator(err, entity_type="subscription")
        raise err
    return charge
