# tests/conftest.py

import uuid
from contextlib import nullcontext

import pytest
from fastapi.testclient import TestClient

from app.invoices import service as invoice_service
from app.payout_accounts import connector
from app.providers import factory
from app.providers.mock import MockProcessor
from app.referrals import attributor
from app.refunds import adjudicator
from app.subscriptions import service as subscription_service
from app.transfers import service as transfer_service
from app.webhooks import stripe_events
from app.workers import referral_commission_worker, transfer_retry_worker
from deps.admin import require_admin
from deps.auth import CurrentUser, get_current_user
from main import app
from routes import admin_transfers, payout_accounts, refunds, subscriptions, webhooks
from services import events
from settings import settings
from fakes import FakeStore


class FakeConn:
    """Never touched by the fake repositories; only passed through."""


def _fake_get_conn():
    return nullcontext(FakeConn())


# ---------------------------
# Store + processor
# ---------------------------

@pytest.fixture(autouse=True)
def store(monkeypatch) -> FakeStore:
    s = FakeStore()

    monkeypatch.setattr(connector, "repository", s.payout_accounts)
    monkeypatch.setattr(subscription_service, "repository", s.subscriptions)
    monkeypatch.setattr(transfer_service, "repository", s.failed_transfers)
    monkeypatch.setattr(transfer_retry_worker, "repository", s.failed_transfers)
    monkeypatch.setattr(admin_transfers, "repository", s.failed_transfers)
    monkeypatch.setattr(attributor, "repository", s.referrals)
    monkeypatch.setattr(referral_commission_worker, "repository", s.referrals)
    monkeypatch.setattr(adjudicator, "repository", s.refunds)
    monkeypatch.setattr(adjudicator, "subscriptions", s.subscriptions)
    monkeypatch.setattr(invoice_service, "subscriptions", s.subscriptions)
    monkeypatch.setattr(invoice_service, "failed_transfers", s.failed_transfers)
    monkeypatch.setattr(stripe_events, "repository", s.webhook_events)

    monkeypatch.setattr(events, "emit_event", s.emit_event)
    monkeypatch.setattr(events, "alert_operator", s.alert_operator)
    monkeypatch.setattr(adjudicator, "write_audit_log", s.write_audit_log)

    for module in (
        transfer_retry_worker,
        referral_commission_worker,
        payout_accounts,
        subscriptions,
        refunds,
        admin_transfers,
        webhooks,
    ):
        monkeypatch.setattr(module, "get_conn", _fake_get_conn)

    # keep fixed defaults regardless of the developer's .env
    monkeypatch.setattr(settings, "PROCESSOR_MODE", "mock")
    monkeypatch.setattr(settings, "TRANSFER_RETRY_MAX_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "TRANSFER_RETRY_BASE_BACKOFF_S", 0)
    monkeypatch.setattr(settings, "TRANSFER_RETRY_BATCH_SIZE", 10)
    monkeypatch.setattr(settings, "PLATFORM_FEE_PERCENT", 20.0)
    monkeypatch.setattr(settings, "REFERRAL_WINDOW_MONTHS", 9)
    monkeypatch.setattr(settings, "REFERRAL_COMMISSION_PERCENT", 7.5)
    monkeypatch.setattr(settings, "REFERRAL_PAYOUT_THRESHOLD_CENTS", 2500)
    monkeypatch.setattr(settings, "PAYOUT_STATUS_MAX_AGE_S", 300)
    return s


@pytest.fixture(autouse=True)
def processor(monkeypatch) -> MockProcessor:
    p = MockProcessor()
    factory.reset_processor_cache()
    monkeypatch.setitem(factory._PROCESSOR_CACHE, "mock", p)
    yield p
    factory.reset_processor_cache()


@pytest.fixture
def connected_creator(store, processor):
    """A creator whose payout account is linked and fully enabled."""
    creator_id = str(uuid.uuid4())
    account_id = f"acct_{creator_id[:8]}"
    store.payout_accounts.link(creator_id, account_id)
    processor.set_account(account_id)
    return creator_id


# ---------------------------
# HTTP client + auth
# ---------------------------

@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def client(user_id):
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(user_id=user_id)
    app.dependency_overrides[require_admin] = lambda: CurrentUser(user_id=user_id)
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
