# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Literal

ProrationBehavior = Literal["create_prorations", "always_invoice", "none"]


@dataclass(frozen=True)
class AccountStatus:
    account_id: str
    onboarding_complete: bool
    payouts_enabled: bool
    charges_enabled: bool


@dataclass(frozen=True)
class OnboardingLink:
    account_id: str
    url: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class SubscriptionResult:
    subscription_id: str
    status: str
    price_ref: Optional[str] = None
    cancel_at_period_end: bool = False
    current_period_end: Optional[datetime] = None
    paused_until: Optional[datetime] = None


@dataclass(frozen=True)
class TransferResult:
    transfer_id: str
    amount_cents: int
    currency: str
    destination: str


@dataclass(frozen=True)
class ChargeInfo:
    """The most recent paid charge behind a subscription."""
    invoice_id: str
    payment_ref: str
    amount_cents: int
    currency: str


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount_cents: int
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentProcessor(Protocol):
    """
    Every method is a blocking call bounded by the configured request timeout.
    Failures raise services.errors.ProcessorError with `retryable` set.
    """

    def create_account(self, *, creator_id: str, idempotency_key: str) -> AccountStatus: ...
    def create_onboarding_link(self, *, account_id: str, refresh_url: str, return_url: str) -> OnboardingLink: ...
    def retrieve_account(self, account_id: str) -> AccountStatus: ...

    def change_subscription_price(
        self, subscription_id: str, *, new_price_ref: str, proration_behavior: ProrationBehavior
    ) -> SubscriptionResult: ...
    def pause_subscription(self, subscription_id: str, *, resumes_at: datetime) -> SubscriptionResult: ...
    def resume_subscription(self, subscription_id: str) -> SubscriptionResult: ...
    def cancel_subscription_at_period_end(self, subscription_id: str) -> SubscriptionResult: ...

    def create_transfer(
        self,
        *,
        amount_cents: int,
        currency: str,
        destination: str,
        idempotency_key: str,
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> TransferResult: ...

    def get_latest_charge(self, subscription_id: str) -> Optional[ChargeInfo]: ...
    def create_refund(self, *, payment_ref: str, amount_cents: int, idempotency_key: str) -> RefundResult: ...
