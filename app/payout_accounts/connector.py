# app/payout_accounts/connector.py
"""
Payout Account Connector.

Owns the link between a creator and their processor payout account, and is
the only writer of the onboarding / payouts / charges flags.

Staleness contract: the flags stored locally are a cache of the processor's
view and can change at any time (e.g. the processor finishes a manual
review). `refresh_status` always asks the processor. `get_status` returns
the cached flags only if they were confirmed within `max_age_s` seconds
(PAYOUT_STATUS_MAX_AGE_S by default) and refreshes otherwise. Anything that
moves money calls `refresh_status`.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from app.payout_accounts import repository
from app.payout_accounts.model import CreatorPayoutAccount, OnboardingResult, PayoutAccountStatus
from app.providers.base import AccountStatus
from app.providers.factory import get_processor
from services.errors import PayoutsNotEnabled, ProcessorError, wrap_processor_error
from settings import settings

logger = logging.getLogger("creatorpay.payout_accounts")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status_from(account: CreatorPayoutAccount) -> PayoutAccountStatus:
    return PayoutAccountStatus(
        creator_id=account.creator_id,
        connected=True,
        onboarding_complete=account.onboarding_complete,
        payouts_enabled=account.payouts_enabled,
        charges_enabled=account.charges_enabled,
        account_id=account.external_account_id,
        refreshed_at=account.status_refreshed_at,
    )


def initiate_onboarding(conn, creator_id: str) -> OnboardingResult:
    """
    Create the processor account on first call and return an onboarding URL.
    Idempotent: an already linked account is reused, never duplicated.
    """
    processor = get_processor()
    repository.ensure_account_row(conn, creator_id)
    row = repository.get_account(conn, creator_id)
    account_id = (row or {}).get("external_account_id")
    created = False

    try:
        if not account_id:
            acct = processor.create_account(
                creator_id=creator_id,
                idempotency_key=f"payout-account-{creator_id}",
            )
            if repository.attach_external_account(conn, creator_id=creator_id, external_account_id=acct.account_id):
                account_id = acct.account_id
                created = True
                logger.info("payout account created creator=%s account=%s", creator_id, account_id)
            else:
                # lost the race to a concurrent onboarding call; use the winner's account
                row = repository.get_account(conn, creator_id) or {}
                account_id = row.get("external_account_id")
                logger.warning(
                    "payout account attach lost race creator=%s kept=%s orphan=%s",
                    creator_id, account_id, acct.account_id,
                )

        link = processor.create_onboarding_link(
            account_id=account_id,
            refresh_url=settings.ONBOARDING_REFRESH_URL,
            return_url=settings.ONBOARDING_RETURN_URL,
        )
    except ProcessorError as e:
        logger.warning("onboarding failed creator=%s op=%s retryable=%s", creator_id, e.operation, e.retryable)
        raise wrap_processor_error(e, entity_id=creator_id) from e

    return OnboardingResult(creator_id=creator_id, account_id=account_id, url=link.url, created=created)


def refresh_status(conn, creator_id: str) -> PayoutAccountStatus:
    """
    Poll the processor for the account's flags and persist them.
    No account yet => PayoutAccountStatus(connected=False), not an error.
    Processor failures propagate (retryable ones as ProcessorUnavailable);
    no retry happens here.
    """
    row = repository.get_account(conn, creator_id)
    if not row or not row.get("external_account_id"):
        return PayoutAccountStatus.not_connected(creator_id)

    account_id = row["external_account_id"]
    try:
        remote = get_processor().retrieve_account(account_id)
    except ProcessorError as e:
        raise wrap_processor_error(e, entity_id=creator_id) from e

    _persist_flags(conn, creator_id, remote)
    logger.info(
        "payout account refreshed creator=%s account=%s onboarding=%s payouts=%s charges=%s",
        creator_id, account_id, remote.onboarding_complete, remote.payouts_enabled, remote.charges_enabled,
    )
    return PayoutAccountStatus(
        creator_id=creator_id,
        connected=True,
        onboarding_complete=remote.onboarding_complete,
        payouts_enabled=remote.payouts_enabled,
        charges_enabled=remote.charges_enabled,
        account_id=account_id,
        refreshed_at=_utcnow(),
    )


def get_status(conn, creator_id: str, *, max_age_s: int | None = None) -> PayoutAccountStatus:
    max_age = settings.PAYOUT_STATUS_MAX_AGE_S if max_age_s is None else max_age_s
    row = repository.get_account(conn, creator_id)
    if not row or not row.get("external_account_id"):
        return PayoutAccountStatus.not_connected(creator_id)

    account = CreatorPayoutAccount.from_row(row)
    refreshed = account.status_refreshed_at
    if refreshed is not None and _utcnow() - refreshed <= timedelta(seconds=max_age):
        return _status_from(account)
    return refresh_status(conn, creator_id)


def require_payouts_enabled(conn, creator_id: str) -> PayoutAccountStatus:
    status = refresh_status(conn, creator_id)
    if not (status.connected and status.payouts_enabled):
        raise PayoutsNotEnabled(
            "payouts are not enabled for this creator",
            entity_id=creator_id,
            operation="payouts.check",
        )
    return status


def apply_account_update(conn, remote: AccountStatus) -> bool:
    """
    Processor-pushed account change (webhook). Unknown accounts are ignored
    and reported as False.
    """
    row = repository.get_account_by_external_id(conn, remote.account_id)
    if not row:
        logger.warning("account update for unknown account=%s", remote.account_id)
        return False
    return _persist_flags(conn, str(row["creator_id"]), remote)


def _persist_flags(conn, creator_id: str, remote: AccountStatus) -> bool:
    ok = repository.update_flags(
        conn,
        creator_id=creator_id,
        external_account_id=remote.account_id,
        onboarding_complete=remote.onboarding_complete,
        payouts_enabled=remote.payouts_enabled,
        charges_enabled=remote.charges_enabled,
    )
    if not ok:
        logger.warning("payout flags not persisted creator=%s account=%s", creator_id, remote.account_id)
    return ok
