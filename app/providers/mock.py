# app/providers/mock.py
from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

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


@dataclass
class _MockSubscription:
    subscription_id: str
    status: str = "active"
    price_ref: Optional[str] = None
    cancel_at_period_end: bool = False
    current_period_end: Optional[datetime] = None
    paused_until: Optional[datetime] = None


class MockProcessor:
    """
    Test/dev processor. Deterministic, in-memory.

    - Every call is appended to `calls` as (operation, kwargs).
    - `fail_next(operation, ...)` scripts the next call(s) of an operation to
      raise ProcessorError; retryable defaults to True (a 503-style failure).
    - New accounts start fully disabled; flip flags with `set_account`.
    """

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.accounts: dict[str, AccountStatus] = {}
        self.subscriptions: dict[str, _MockSubscription] = {}
        self.charges: dict[str, ChargeInfo] = {}
        self.transfers: dict[str, TransferResult] = {}
        self.refunds: dict[str, RefundResult] = {}
        self._failures: dict[str, list[ProcessorError]] = {}
        self._idempotent: dict[str, Any] = {}
        self._seq = itertools.count(1)

    # -----------------------------
    # scripting helpers
    # -----------------------------

    def fail_next(self, operation: str, *, message: str = "Gateway timeout", retryable: bool = True, times: int = 1) -> None:
        for _ in range(times):
            self._failures.setdefault(operation, []).append(
                ProcessorError(message, operation=operation, retryable=retryable, code="mock_failure",
                               http_status=504 if retryable else 400)
            )

    def set_account(self, account_id: str, *, onboarding_complete: bool = True, payouts_enabled: bool = True,
                    charges_enabled: bool = True) -> None:
        self.accounts[account_id] = AccountStatus(account_id, onboarding_complete, payouts_enabled, charges_enabled)

    def add_subscription(self, subscription_id: str, *, price_ref: str = "price_basic",
                         current_period_end: Optional[datetime] = None) -> None:
        self.subscriptions[subscription_id] = _MockSubscription(
            subscription_id=subscription_id,
            price_ref=price_ref,
            current_period_end=current_period_end or datetime.now(timezone.utc) + timedelta(days=30),
        )

    def set_latest_charge(self, subscription_id: str, *, amount_cents: int, currency: str = "usd",
                          payment_ref: Optional[str] = None, invoice_id: Optional[str] = None) -> None:
        n = next(self._seq)
        self.charges[subscription_id] = ChargeInfo(
            invoice_id=invoice_id or f"in_mock_{n}",
            payment_ref=payment_ref or f"pi_mock_{n}",
            amount_cents=amount_cents,
            currency=currency,
        )

    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]

    def _call(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _sub(self, subscription_id: str, operation: str) -> _MockSubscription:
        sub = self.subscriptions.get(subscription_id)
        if sub is None:
            raise ProcessorError(f"No such subscription: '{subscription_id}'", operation=operation,
                                 retryable=False, code="resource_missing", http_status=404)
        return sub

    @staticmethod
    def _result(sub: _MockSubscription) -> SubscriptionResult:
        return SubscriptionResult(
            subscription_id=sub.subscription_id,
            status=sub.status,
            price_ref=sub.price_ref,
            cancel_at_period_end=sub.cancel_at_period_end,
            current_period_end=sub.current_period_end,
            paused_until=sub.paused_until,
        )

    # -----------------------------
    # PaymentProcessor
    # -----------------------------

    def create_account(self, *, creator_id: str, idempotency_key: str) -> AccountStatus:
        self._call("account.create", creator_id=creator_id, idempotency_key=idempotency_key)
        if idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        acct = AccountStatus(f"acct_mock_{next(self._seq)}", False, False, False)
        self.accounts[acct.account_id] = acct
        self._idempotent[idempotency_key] = acct
        return acct

    def create_onboarding_link(self, *, account_id: str, refresh_url: str, return_url: str) -> OnboardingLink:
        self._call("account_link.create", account_id=account_id)
        return OnboardingLink(
            account_id=account_id,
            url=f"https://connect.mock/setup/{account_id}?return={return_url}",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=5),
        )

    def retrieve_account(self, account_id: str) -> AccountStatus:
        self._call("account.retrieve", account_id=account_id)
        acct = self.accounts.get(account_id)
        if acct is None:
            raise ProcessorError(f"No such account: '{account_id}'", operation="account.retrieve",
                                 retryable=False, code="resource_missing", http_status=404)
        return acct

    def change_subscription_price(self, subscription_id: str, *, new_price_ref: str,
                                  proration_behavior: ProrationBehavior) -> SubscriptionResult:
        self._call("subscription.update_price", subscription_id=subscription_id,
                   new_price_ref=new_price_ref, proration_behavior=proration_behavior)
        sub = self._sub(subscription_id, "subscription.update_price")
        sub.price_ref = new_price_ref
        return self._result(sub)

    def pause_subscription(self, subscription_id: str, *, resumes_at: datetime) -> SubscriptionResult:
        self._call("subscription.pause", subscription_id=subscription_id, resumes_at=resumes_at)
        sub = self._sub(subscription_id, "subscription.pause")
        sub.paused_until = resumes_at
        return self._result(sub)

    def resume_subscription(self, subscription_id: str) -> SubscriptionResult:
        self._call("subscription.resume", subscription_id=subscription_id)
        sub = self._sub(subscription_id, "subscription.resume")
        sub.paused_until = None
        return self._result(sub)

    def cancel_subscription_at_period_end(self, subscription_id: str) -> SubscriptionResult:
        self._call("subscription.cancel_at_period_end", subscription_id=subscription_id)
        sub = self._sub(subscription_id, "subscription.cancel_at_period_end")
        sub.cancel_at_period_end = True
        # status stays as-is until the period actually ends
        return self._result(sub)

    def create_transfer(self, *, amount_cents: int, currency: str, destination: str, idempotency_key: str,
                        description: str | None = None, metadata: dict[str, str] | None = None) -> TransferResult:
        self._call("transfer.create", amount_cents=amount_cents, currency=currency, destination=destination,
                   idempotency_key=idempotency_key, metadata=metadata or {})
        if idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        tr = TransferResult(f"tr_mock_{next(self._seq)}", int(amount_cents), currency, destination)
        self.transfers[tr.transfer_id] = tr
        self._idempotent[idempotency_key] = tr
        return tr

    def get_latest_charge(self, subscription_id: str) -> Optional[ChargeInfo]:
        self._call("subscription.latest_charge", subscription_id=subscription_id)
        return self.charges.get(subscription_id)

    def create_refund(self, *, payment_ref: str, amount_cents: int, idempotency_key: str) -> RefundResult:
        self._call("refund.create", payment_ref=payment_ref, amount_cents=amount_cents,
                   idempotency_key=idempotency_key)
        if idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        refund = RefundResult(f"re_mock_{next(self._seq)}", int(amount_cents), "succeeded",
                              raw={"payment_ref": payment_ref})
        self.refunds[refund.refund_id] = refund
        self._idempotent[idempotency_key] = refund
        return refund

