# tests/fakes.py
"""
In-memory stand-ins for the SQL repositories. Same function signatures,
same conditional-update semantics (an update that does not match the
expected prior state changes nothing and reports False / None).
"""
from __future__ import annotations

import itertools
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from app.transfers.retry_policy import RetryPolicy


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _copy(row: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    return dict(row) if row is not None else None


class _Clock:
    """Strictly increasing created_at values so ordering by creation is total."""

    def __init__(self):
        self._base = _now() - timedelta(days=1)
        self._n = itertools.count(1)

    def tick(self) -> datetime:
        return self._base + timedelta(milliseconds=next(self._n))


# ==========================================================
# Payout accounts
# ==========================================================

class FakePayoutAccounts:
    def __init__(self):
        self.rows: dict[str, dict[str, Any]] = {}

    def link(self, creator_id: str, account_id: str) -> None:
        self.ensure_account_row(None, creator_id)
        self.rows[creator_id]["external_account_id"] = account_id

    def get_account(self, conn, creator_id):
        return _copy(self.rows.get(creator_id))

    def get_account_by_external_id(self, conn, external_account_id):
        for row in self.rows.values():
            if row["external_account_id"] == external_account_id:
                return _copy(row)
        return None

    def ensure_account_row(self, conn, creator_id):
        self.rows.setdefault(creator_id, {
            "creator_id": creator_id,
            "external_account_id": None,
            "onboarding_complete": False,
            "payouts_enabled": False,
            "charges_enabled": False,
            "status_refreshed_at": None,
        })

    def attach_external_account(self, conn, *, creator_id, external_account_id):
        row = self.rows.get(creator_id)
        if row is None or row["external_account_id"] is not None:
            return False
        row["external_account_id"] = external_account_id
        return True

    def update_flags(self, conn, *, creator_id, external_account_id, onboarding_complete, payouts_enabled,
                     charges_enabled):
        row = self.rows.get(creator_id)
        if row is None or row["external_account_id"] != external_account_id:
            return False
        row.update(
            onboarding_complete=onboarding_complete,
            payouts_enabled=payouts_enabled,
            charges_enabled=charges_enabled,
            status_refreshed_at=_now(),
        )
        return True


# ==========================================================
# Subscriptions
# ==========================================================

class FakeSubscriptions:
    def __init__(self, clock: _Clock):
        self.rows: dict[str, dict[str, Any]] = {}
        self._clock = clock

    def add(self, *, subscriber_id: str, creator_id: str, external_subscription_id: Optional[str] = "sub_ext_1",
            status: str = "active", price_ref: str = "price_basic", last_charge_amount_cents: Optional[int] = None,
            current_period_end: Optional[datetime] = None) -> dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "subscriber_id": subscriber_id,
            "creator_id": creator_id,
            "external_subscription_id": external_subscription_id,
            "status": status,
            "pause_until": None,
            "price_ref": price_ref,
            "cancel_at_period_end": False,
            "current_period_end": current_period_end or _now() + timedelta(days=20),
            "last_charge_amount_cents": last_charge_amount_cents,
            "last_invoice_id": None,
            "created_at": self._clock.tick(),
        }
        self.rows[row["id"]] = row
        return dict(row)

    def get_open_subscription(self, conn, *, subscriber_id, creator_id):
        matches = [
            r for r in self.rows.values()
            if r["subscriber_id"] == subscriber_id and r["creator_id"] == creator_id and r["status"] != "canceled"
        ]
        matches.sort(key=lambda r: r["created_at"], reverse=True)
        return _copy(matches[0]) if matches else None

    def get_subscription(self, conn, subscription_id):
        return _copy(self.rows.get(subscription_id))

    def get_by_external_id(self, conn, external_subscription_id):
        for row in self.rows.values():
            if row["external_subscription_id"] == external_subscription_id:
                return _copy(row)
        return None

    def insert_subscription(self, conn, *, subscriber_id, creator_id, external_subscription_id, price_ref,
                            current_period_end):
        if self.get_open_subscription(conn, subscriber_id=subscriber_id, creator_id=creator_id):
            return None
        row = self.add(
            subscriber_id=subscriber_id,
            creator_id=creator_id,
            external_subscription_id=external_subscription_id,
            price_ref=price_ref,
            current_period_end=current_period_end,
        )
        return row

    def apply_transition(self, conn, *, subscription_id, from_status, new_status, pause_until, price_ref,
                         cancel_at_period_end, current_period_end):
        row = self.rows.get(subscription_id)
        if row is None or row["status"] != from_status:
            return False
        row.update(
            status=new_status,
            pause_until=pause_until,
            price_ref=price_ref,
            cancel_at_period_end=cancel_at_period_end,
            current_period_end=current_period_end,
        )
        return True

    def record_charge(self, conn, *, subscription_id, invoice_id, amount_cents, current_period_end):
        row = self.rows.get(subscription_id)
        if row is None:
            return False
        row.update(last_invoice_id=invoice_id, last_charge_amount_cents=amount_cents)
        if current_period_end is not None:
            row["current_period_end"] = current_period_end
        return True


# ==========================================================
# Failed transfers
# ==========================================================

class FakeFailedTransfers:
    def __init__(self, clock: _Clock):
        self.rows: dict[str, dict[str, Any]] = {}
        self.locked: set[str] = set()
        self._clock = clock

    def _open_conflict(self, subscription_id, invoice_id, referral_payout_id) -> bool:
        for r in self.rows.values():
            if r["resolved_at"] is not None:
                continue
            if subscription_id is not None and (r["subscription_id"], r["invoice_id"]) == (subscription_id, invoice_id):
                return True
            if referral_payout_id is not None and r["referral_payout_id"] == referral_payout_id:
                return True
        return False

    def insert_failed_transfer(self, conn, *, creator_id, kind, amount_cents, currency, error_message,
                               subscription_id=None, invoice_id=None, referral_payout_id=None, metadata=None):
        if self._open_conflict(subscription_id, invoice_id, referral_payout_id):
            return None
        row = {
            "id": str(uuid.uuid4()),
            "creator_id": creator_id,
            "kind": kind,
            "subscription_id": subscription_id,
            "invoice_id": invoice_id,
            "referral_payout_id": referral_payout_id,
            "amount_cents": int(amount_cents),
            "currency": currency,
            "error_message": error_message,
            "retry_count": 0,
            "last_retry_at": None,
            "resolved_at": None,
            "external_transfer_id": None,
            "metadata": dict(metadata or {}),
            "created_at": self._clock.tick(),
        }
        self.rows[row["id"]] = row
        return dict(row)

    def list_due_ids(self, conn, *, batch_size, max_attempts, base_backoff_s):
        policy = RetryPolicy(max_attempts=max_attempts, base_backoff_s=base_backoff_s)
        now = _now()
        due = [
            r for r in self.rows.values()
            if r["resolved_at"] is None and policy.is_due(r["retry_count"], r["last_retry_at"], now)
        ]
        due.sort(key=lambda r: (r["created_at"], r["id"]))
        return [r["id"] for r in due[:batch_size]]

    def lock_for_retry(self, conn, transfer_id, *, max_attempts):
        row = self.rows.get(transfer_id)
        if row is None or transfer_id in self.locked:
            return None
        if row["resolved_at"] is not None or row["retry_count"] >= max_attempts:
            return None
        return dict(row)

    def mark_resolved(self, conn, *, transfer_id, expected_retry_count, external_transfer_id):
        row = self.rows.get(transfer_id)
        if row is None or row["resolved_at"] is not None or row["retry_count"] != expected_retry_count:
            return False
        row.update(resolved_at=_now(), external_transfer_id=external_transfer_id)
        return True

    def record_retry_failure(self, conn, *, transfer_id, expected_retry_count, error_message, max_attempts):
        row = self.rows.get(transfer_id)
        if (
            row is None
            or row["resolved_at"] is not None
            or row["retry_count"] != expected_retry_count
            or row["retry_count"] >= max_attempts
        ):
            return None
        row.update(retry_count=row["retry_count"] + 1, last_retry_at=_now(), error_message=error_message)
        return row["retry_count"]

    def get_failed_transfer(self, conn, transfer_id):
        return _copy(self.rows.get(transfer_id))

    def get_for_invoice(self, conn, *, subscription_id, invoice_id):
        for r in sorted(self.rows.values(), key=lambda r: r["created_at"], reverse=True):
            if r["subscription_id"] == subscription_id and r["invoice_id"] == invoice_id:
                return dict(r)
        return None

    def list_unresolved(self, conn, *, exhausted_only, max_attempts, limit=100):
        rows = [
            r for r in self.rows.values()
            if r["resolved_at"] is None and (not exhausted_only or r["retry_count"] >= max_attempts)
        ]
        rows.sort(key=lambda r: r["created_at"])
        return [dict(r) for r in rows[:limit]]


# ==========================================================
# Referrals
# ==========================================================

class FakeReferrals:
    def __init__(self, clock: _Clock):
        self.referrals: dict[str, dict[str, Any]] = {}
        self.commissions: dict[str, dict[str, Any]] = {}
        self.payouts: dict[str, dict[str, Any]] = {}
        self._clock = clock

    def insert_referral(self, conn, *, referrer_id, referred_creator_id):
        if any(r["referred_creator_id"] == referred_creator_id for r in self.referrals.values()):
            return None
        row = {
            "id": str(uuid.uuid4()),
            "referrer_id": referrer_id,
            "referred_creator_id": referred_creator_id,
            "status": "pending",
            "activated_at": None,
            "expires_at": None,
            "commission_earned_cents": 0,
            "created_at": self._clock.tick(),
        }
        self.referrals[row["id"]] = row
        return dict(row)

    def get_by_referred_creator(self, conn, referred_creator_id):
        for r in self.referrals.values():
            if r["referred_creator_id"] == referred_creator_id:
                return dict(r)
        return None

    def activate(self, conn, *, referral_id, activated_at, expires_at):
        row = self.referrals.get(referral_id)
        if row is None or row["status"] != "pending":
            return False
        row.update(status="active", activated_at=activated_at, expires_at=expires_at)
        return True

    def add_commission_earned(self, conn, *, referral_id, amount_cents):
        row = self.referrals.get(referral_id)
        if row is None:
            return False
        row["commission_earned_cents"] += int(amount_cents)
        return True

    def expire_due(self, conn, *, now):
        expired = []
        for row in self.referrals.values():
            if row["status"] == "active" and row["expires_at"] <= now:
                row["status"] = "expired"
                expired.append(dict(row))
        return expired

    def insert_commission(self, conn, *, referral_id, referrer_id, source_ref, revenue_cents, commission_cents,
                          currency, earned_at):
        if any(c["source_ref"] == source_ref for c in self.commissions.values()):
            return None
        row = {
            "id": str(uuid.uuid4()),
            "referral_id": referral_id,
            "referrer_id": referrer_id,
            "source_ref": source_ref,
            "revenue_cents": int(revenue_cents),
            "commission_cents": int(commission_cents),
            "currency": currency,
            "earned_at": earned_at,
            "payout_id": None,
        }
        self.commissions[row["id"]] = row
        return dict(row)

    def list_payable(self, conn, *, threshold_cents, limit=100):
        totals: dict[tuple[str, str], int] = {}
        for c in self.commissions.values():
            if c["payout_id"] is None:
                key = (c["referrer_id"], c["currency"])
                totals[key] = totals.get(key, 0) + c["commission_cents"]
        return [
            {"referrer_id": referrer, "currency": currency, "total_cents": total}
            for (referrer, currency), total in totals.items()
            if total >= threshold_cents
        ][:limit]

    def create_payout(self, conn, *, referrer_id, currency):
        payout_id = str(uuid.uuid4())
        self.payouts[payout_id] = {
            "id": payout_id,
            "referrer_id": referrer_id,
            "currency": currency,
            "amount_cents": 0,
            "status": "pending",
            "external_transfer_id": None,
            "failed_transfer_id": None,
        }
        return payout_id

    def claim_commissions(self, conn, *, payout_id, referrer_id, currency):
        total = 0
        for c in self.commissions.values():
            if c["referrer_id"] == referrer_id and c["currency"] == currency and c["payout_id"] is None:
                c["payout_id"] = payout_id
                total += c["commission_cents"]
        self.payouts[payout_id]["amount_cents"] = total
        return total

    def release_payout(self, conn, *, payout_id):
        for c in self.commissions.values():
            if c["payout_id"] == payout_id:
                c["payout_id"] = None
        if self.payouts.get(payout_id, {}).get("status") == "pending":
            del self.payouts[payout_id]

    def finish_payout(self, conn, *, payout_id, status, external_transfer_id=None, failed_transfer_id=None):
        row = self.payouts.get(payout_id)
        if row is None or row["status"] != "pending":
            return False
        row.update(status=status, external_transfer_id=external_transfer_id, failed_transfer_id=failed_transfer_id)
        return True


# ==========================================================
# Refund requests
# ==========================================================

class FakeRefunds:
    def __init__(self, clock: _Clock):
        self.rows: dict[str, dict[str, Any]] = {}
        self._clock = clock

    def insert_request(self, conn, *, user_id, subscription_id, amount_cents, reason):
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "subscription_id": subscription_id,
            "amount_cents": int(amount_cents),
            "reason": reason,
            "status": "pending",
            "external_refund_id": None,
            "admin_notes": None,
            "decided_by": None,
            "decided_at": None,
            "created_at": self._clock.tick(),
        }
        self.rows[row["id"]] = row
        return dict(row)

    def get_request(self, conn, request_id, *, for_update=False):
        return _copy(self.rows.get(request_id))

    def mark_processed(self, conn, *, request_id, external_refund_id, admin_id, admin_notes):
        row = self.rows.get(request_id)
        if row is None or row["status"] != "pending":
            return False
        row.update(status="processed", external_refund_id=external_refund_id, admin_notes=admin_notes,
                   decided_by=admin_id, decided_at=_now())
        return True

    def mark_rejected(self, conn, *, request_id, admin_id, admin_notes):
        row = self.rows.get(request_id)
        if row is None or row["status"] != "pending":
            return False
        row.update(status="rejected", admin_notes=admin_notes, decided_by=admin_id, decided_at=_now())
        return True


# ==========================================================
# Webhook events
# ==========================================================

class FakeWebhookEvents:
    def __init__(self):
        self.rows: dict[tuple[str, str], dict[str, Any]] = {}

    def record_event(self, conn, *, provider, event_id, event_type, request_id=None, payload_summary=None):
        key = (provider, event_id)
        if key in self.rows:
            return False
        self.rows[key] = {"event_type": event_type, "outcome": None}
        return True

    def mark_processed(self, conn, *, provider, event_id, outcome):
        self.rows[(provider, event_id)]["outcome"] = outcome


# ==========================================================
# Everything together
# ==========================================================

class FakeStore:
    def __init__(self):
        clock = _Clock()
        self.payout_accounts = FakePayoutAccounts()
        self.subscriptions = FakeSubscriptions(clock)
        self.failed_transfers = FakeFailedTransfers(clock)
        self.referrals = FakeReferrals(clock)
        self.refunds = FakeRefunds(clock)
        self.webhook_events = FakeWebhookEvents()
        self.events: list[dict[str, Any]] = []
        self.alerts: list[dict[str, Any]] = []
        self.audit: list[dict[str, Any]] = []

    # services.events
    def emit_event(self, conn, event_type, *, entity_type, entity_id, payload=None):
        self.events.append({
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "payload": dict(payload or {}),
        })

    def alert_operator(self, exc, *, entity_type):
        self.alerts.append({"entity_type": entity_type, **exc.context()})

    # services.audit_log
    def write_audit_log(self, conn, *, actor_user_id, action, target_type, target_id, metadata=None):
        self.audit.append({
            "actor_user_id": actor_user_id,
            "action": action,
            "target_type": target_type,
            "target_id": target_id,
            "metadata": dict(metadata or {}),
        })

    def event_types(self) -> list[str]:
        return [e["event_type"] for e in self.events]
