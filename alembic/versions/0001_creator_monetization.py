"""creator monetization schema

Revision ID: 0001_creator_monetization
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_creator_monetization"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.user_roles (
            user_id uuid NOT NULL,
            role text NOT NULL,
            created_at timestamptz NOT NULL DEFAULT now(),
            PRIMARY KEY (user_id, role)
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.creator_payout_accounts (
            creator_id uuid PRIMARY KEY,
            external_account_id text UNIQUE,
            onboarding_complete boolean NOT NULL DEFAULT false,
            payouts_enabled boolean NOT NULL DEFAULT false,
            charges_enabled boolean NOT NULL DEFAULT false,
            status_refreshed_at timestamptz,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.creator_subscriptions (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            subscriber_id uuid NOT NULL,
            creator_id uuid NOT NULL,
            external_subscription_id text,
            status text NOT NULL DEFAULT 'active'
                CHECK (status IN ('active', 'paused', 'past_due', 'canceled')),
            pause_until timestamptz,
            price_ref text,
            cancel_at_period_end boolean NOT NULL DEFAULT false,
            current_period_end timestamptz,
            last_charge_amount_cents bigint CHECK (last_charge_amount_cents >= 0),
            last_invoice_id text,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_creator_subscriptions_open_pair
        ON app.creator_subscriptions (subscriber_id, creator_id)
        WHERE status <> 'canceled';
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_creator_subscriptions_external
        ON app.creator_subscriptions (external_subscription_id)
        WHERE external_subscription_id IS NOT NULL;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.creator_referrals (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            referrer_id uuid NOT NULL,
            referred_creator_id uuid NOT NULL UNIQUE,
            status text NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'active', 'expired')),
            activated_at timestamptz,
            expires_at timestamptz,
            commission_earned_cents bigint NOT NULL DEFAULT 0,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),
            CHECK (referrer_id <> referred_creator_id)
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_creator_referrals_active_expiry
        ON app.creator_referrals (expires_at)
        WHERE status = 'active';
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.referral_payouts (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            referrer_id uuid NOT NULL,
            currency text NOT NULL,
            amount_cents bigint NOT NULL DEFAULT 0,
            status text NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'sent', 'parked')),
            external_transfer_id text,
            failed_transfer_id uuid,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.referral_commissions (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            referral_id uuid NOT NULL REFERENCES app.creator_referrals(id),
            referrer_id uuid NOT NULL,
            source_ref text NOT NULL UNIQUE,
            revenue_cents bigint NOT NULL CHECK (revenue_cents >= 0),
            commission_cents bigint NOT NULL CHECK (commission_cents >= 0),
            currency text NOT NULL,
            earned_at timestamptz NOT NULL,
            payout_id uuid REFERENCES app.referral_payouts(id),
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_referral_commissions_unpaid
        ON app.referral_commissions (referrer_id, currency)
        WHERE payout_id IS NULL;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.failed_transfers (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            creator_id uuid NOT NULL,
            kind text NOT NULL DEFAULT 'creator_earnings'
                CHECK (kind IN ('creator_earnings', 'referral_commission')),
            subscription_id uuid REFERENCES app.creator_subscriptions(id),
            invoice_id text,
            referral_payout_id uuid REFERENCES app.referral_payouts(id),
            amount_cents bigint NOT NULL CHECK (amount_cents > 0),
            currency text NOT NULL,
            error_message text,
            retry_count integer NOT NULL DEFAULT 0 CHECK (retry_count >= 0),
            last_retry_at timestamptz,
            resolved_at timestamptz,
            external_transfer_id text,
            metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_failed_transfers_open_cycle
        ON app.failed_transfers (subscription_id, invoice_id)
        WHERE resolved_at IS NULL AND subscription_id IS NOT NULL;
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_failed_transfers_open_referral_payout
        ON app.failed_transfers (referral_payout_id)
        WHERE resolved_at IS NULL AND referral_payout_id IS NOT NULL;
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_failed_transfers_due
        ON app.failed_transfers (created_at, id)
        WHERE resolved_at IS NULL;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.refund_requests (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id uuid NOT NULL,
            subscription_id uuid NOT NULL REFERENCES app.creator_subscriptions(id),
            amount_cents bigint NOT NULL CHECK (amount_cents > 0),
            reason text,
            status text NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processed', 'rejected')),
            external_refund_id text,
            admin_notes text,
            decided_by uuid,
            decided_at timestamptz,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),
            CHECK (status <> 'rejected' OR admin_notes IS NOT NULL),
            CHECK (status <> 'processed' OR external_refund_id IS NOT NULL)
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.domain_events (
            id bigserial PRIMARY KEY,
            event_type text NOT NULL,
            entity_type text NOT NULL,
            entity_id text NOT NULL,
            payload jsonb NOT NULL DEFAULT '{}'::jsonb,
            request_id text,
            created_at timestamptz NOT NULL DEFAULT now(),
            delivered_at timestamptz
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_domain_events_undelivered
        ON app.domain_events (id)
        WHERE delivered_at IS NULL;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.audit_log (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_user_id uuid NOT NULL,
            action text NOT NULL,
            target_type text NOT NULL,
            target_id text,
            metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
            request_id text,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.webhook_events (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            provider text NOT NULL,
            event_id text NOT NULL,
            event_type text NOT NULL,
            request_id text,
            payload_summary jsonb NOT NULL DEFAULT '{}'::jsonb,
            outcome text,
            received_at timestamptz NOT NULL DEFAULT now(),
            processed_at timestamptz,
            UNIQUE (provider, event_id)
        );
        """
    )


def downgrade() -> None:
    for table in (
        "webhook_events",
        "audit_log",
        "domain_events",
        "refund_requests",
        "failed_transfers",
        "referral_commissions",
        "referral_payouts",
        "creator_referrals",
        "creator_subscriptions",
        "creator_payout_accounts",
        "user_roles",
    ):
        op.execute(f"DROP TABLE IF EXISTS app.{table};")
