# routes/webhooks.py
from __future__ import annotations

import json
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from app.webhooks import stripe_events
from db import get_conn
from services.errors import CreatorPayError, raise_http_from_domain_error
from settings import settings


router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("creatorpay.webhooks")


async def raw_body(req: Request) -> bytes:
    return await req.body()


# sync handler: FastAPI runs it in the threadpool, off the event loop
@router.post("/stripe")
def stripe_webhook(
    req: Request,
    raw: bytes = Depends(raw_body),
    sig_header: Optional[str] = Header(default=None, alias="Stripe-Signature"),
):
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("stripe webhook received but STRIPE_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="WEBHOOK_SECRET_NOT_CONFIGURED")
    if not sig_header:
        raise HTTPException(status_code=400, detail="MISSING_SIGNATURE")

    try:
        stripe.Webhook.construct_event(raw, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError:
        raise HTTPException(status_code=400, detail="INVALID_PAYLOAD")
    except stripe.SignatureVerificationError:
        logger.warning("stripe webhook signature invalid request_id=%s", getattr(req.state, "request_id", None))
        raise HTTPException(status_code=400, detail="INVALID_SIGNATURE")

    # signature verified over these exact bytes
    event = json.loads(raw)

    try:
        with get_conn() as conn:
            outcome = stripe_events.handle_event(conn, event)
    except CreatorPayError as e:
        raise_http_from_domain_error(e)
    return {"ok": True, "type": event.get("type"), "outcome": outcome}
