# app/providers/stripe_processor.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from app.providers.base import (
    AccountStatus,
    ChargeInfo,
    OnboardingLink,
    ProrationBehavior,
    RefundResult,
    SubscriptionResult,
    TransferResult,
)
from services.errors import ProcessorError
from settings import settings

logger = logging.getLogger("creatorpay.stripe")

# transient / throttling / gateway issues
RETRYABLE_HTTP = (408, 409, 425, 429, 500, 502, 503, 504)


def _ts(value: Any) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _attr(obj: Any, name: str, default: Any = None) -> Any:
    # item access first: on StripeObject `.items` is the mapping method, not the field
    if obj is None:
        return default
    try:
        value = obj[name]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, name, default) if name != "items" else default
    return default if value is None else value


def _translate(exc: stripe.StripeError, operation: str) -> ProcessorError:
    http_status = getattr(exc, "http_status", None)
    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)):
        retryable = True
    elif isinstance(exc, stripe.IdempotencyError):
        retryable = False
    else:
        retryable = http_status in RETRYABLE_HTTP

    message = getattr(exc, "user_message", None) or str(exc) or type(exc).__name__
    return ProcessorError(
        message,
        operation=operation,
        retryable=retryable,
        code=getattr(exc, "code", None) or type(exc).__name__,
        http_status=http_status,
    )


class StripeProcessor:
    """
    PaymentProcessor backed by Stripe Connect + Billing.

    Automatic network retries are disabled: callers own retry policy
    (the transfer retry engine, or the user pressing the button again).
    """

    def __init__(self, *, api_key: str | None = None, timeout_s: float | None = None):
        stripe.api_key = api_key or settings.STRIPE_SECRET_KEY
        if settings.STRIPE_API_VERSION:
            stripe.api_version = settings.STRIPE_API_VERSION
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_s or settings.PROCESSOR_TIMEOUT_S)

    # -----------------------------
    # Connect accounts
    # -----------------------------

    def create_account(self, *, creator_id: str, idempotency_key: str) -> AccountStatus:
        try:
            acct = stripe.Account.create(
                type="express",
                capabilities={"transfers": {"requested": True}},
                metadata={"creator_id": creator_id},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise _translate(e, "account.create") from e
        return self._account_status(acct)

    def create_onboarding_link(self, *, account_id: str, refresh_url: str, return_url: str) -> OnboardingLink:
        try:
            link = stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        except stripe.StripeError as e:
            raise _translate(e, "account_link.create") from e
        return OnboardingLink(account_id=account_id, url=link.url, expires_at=_ts(_attr(link, "expires_at")))

    def retrieve_account(self, account_id: str) -> AccountStatus:
        try:
            acct = stripe.Account.retrieve(account_id)
        except stripe.StripeError as e:
            raise _translate(e, "account.retrieve") from e
        return self._account_status(acct)

    @staticmethod
    def _account_status(acct: Any) -> AccountStatus:
        return AccountStatus(
            account_id=acct.id,
            onboarding_complete=bool(_attr(acct, "details_submitted", False)),
            payouts_enabled=bool(_attr(acct, "payouts_enabled", False)),
            charges_enabled=bool(_attr(acct, "charges_enabled", False)),
        )

    # -----------------------------
    # Subscriptions
    # -----------------------------

    def change_subscription_price(
        self, subscription_id: str, *, new_price_ref: str, proration_behavior: ProrationBehavior
    ) -> SubscriptionResult:
        try:
            current = stripe.Subscription.retrieve(subscription_id)
            items = _attr(_attr(current, "items"), "data") or []
            if not items:
                raise ProcessorError(
                    f"subscription {subscription_id} has no items",
                    operation="subscription.update_price",
                    retryable=False,
                    code="no_subscription_items",
                )
            sub = stripe.Subscription.modify(
                subscription_id,
                items=[{"id": items[0].id, "price": new_price_ref}],
                proration_behavior=proration_behavior,
            )
        except stripe.StripeError as e:
            raise _translate(e, "subscription.update_price") from e
        return self._subscription_result(sub)

    def pause_subscription(self, subscription_id: str, *, resumes_at: datetime) -> SubscriptionResult:
        try:
            sub = stripe.Subscription.modify(
                subscription_id,
                pause_collection={"behavior": "void", "resumes_at": int(resumes_at.timestamp())},
            )
        except stripe.StripeError as e:
            raise _translate(e, "subscription.pause") from e
        return self._subscription_result(sub)

    def resume_subscription(self, subscription_id: str) -> SubscriptionResult:
        try:
            # empty string unsets pause_collection
            sub = stripe.Subscription.modify(subscription_id, pause_collection="")
        except stripe.StripeError as e:
            raise _translate(e, "subscription.resume") from e
        return self._subscription_result(sub)

    def cancel_subscription_at_period_end(self, subscription_id: str) -> SubscriptionResult:
        try:
            sub = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            raise _translate(e, "subscription.cancel_at_period_end") from e
        return self._subscription_result(sub)

    @staticmethod
    def _subscription_result(sub: Any) -> SubscriptionResult:
        items = _attr(_attr(sub, "items"), "data") or []
        price = _attr(items[0], "price") if items else None
        period_end = _attr(sub, "current_period_end")
        if period_end is None and items:
            # newer API versions carry the period on the item
            period_end = _attr(items[0], "current_period_end")
        pause = _attr(sub, "pause_collection")
        return SubscriptionResult(
            subscription_id=sub.id,
            status=_attr(sub, "status", ""),
            price_ref=_attr(price, "id"),
            cancel_at_period_end=bool(_attr(sub, "cancel_at_period_end", False)),
            current_period_end=_ts(period_end),
            paused_until=_ts(_attr(pause, "resumes_at")),
        )

    # -----------------------------
    # Money movement
    # -----------------------------

    def create_transfer(
        self,
        *,
        amount_cents: int,
        currency: str,
        destination: str,
        idempotency_key: str,
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> TransferResult:
        try:
            tr = stripe.Transfer.create(
                amount=int(amount_cents),
                currency=currency.lower(),
                destination=destination,
                description=description,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise _translate(e, "transfer.create") from e
        return TransferResult(transfer_id=tr.id, amount_cents=int(tr.amount), currency=tr.currency, destination=destination)

    def get_latest_charge(self, subscription_id: str) -> Optional[ChargeInfo]:
        try:
            sub = stripe.Subscription.retrieve(subscription_id, expand=["latest_invoice.payments"])
        except stripe.StripeError as e:
            raise _translate(e, "subscription.latest_charge") from e

        invoice = _attr(sub, "latest_invoice")
        if invoice is None or isinstance(invoice, str):
            return None
        if _attr(invoice, "status") != "paid":
            return None

        payment_ref = self._invoice_payment_ref(invoice)
        if not payment_ref:
            return None

        return ChargeInfo(
            invoice_id=invoice.id,
            payment_ref=payment_ref,
            amount_cents=int(_attr(invoice, "amount_paid", 0) or 0),
            currency=_attr(invoice, "currency", "usd"),
        )

    @staticmethod
    def _invoice_payment_ref(invoice: Any) -> Optional[str]:
        # current API versions list payments on the invoice; older ones had
        # payment_intent / charge directly on it
        candidates = []
        for invoice_payment in _attr(_attr(invoice, "payments"), "data") or []:
            if _attr(invoice_payment, "status") not in (None, "paid"):
                continue
            payment = _attr(invoice_payment, "payment")
            candidates.append(_attr(payment, "payment_intent") or _attr(payment, "charge"))
        candidates.append(_attr(invoice, "payment_intent") or _attr(invoice, "charge"))

        for ref in candidates:
            if ref is not None and not isinstance(ref, str):
                ref = _attr(ref, "id")
            if ref:
                return ref
        return None

    def create_refund(self, *, payment_ref: str, amount_cents: int, idempotency_key: str) -> RefundResult:
        target = {"payment_intent": payment_ref} if payment_ref.startswith("pi_") else {"charge": payment_ref}
        try:
            refund = stripe.Refund.create(
                amount=int(amount_cents),
                reason="requested_by_customer",
                idempotency_key=idempotency_key,
                **target,
            )
        except stripe.StripeError as e:
            raise _translate(e, "refund.create") from e
        logger.info("stripe refund created refund=%s amount_cents=%s", refund.id, amount_cents)
        return RefundResult(refund_id=refund.id, amount_cents=int(refund.amount), status=_attr(refund, "status", ""))
