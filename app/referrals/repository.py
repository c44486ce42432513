# app/referrals/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from db import dict_cursor


_COLUMNS = """
  id,
  referrer_id,
  referred_creator_id,
  status,
  activated_at,
  expires_at,
  commission_earned_cents,
  created_at,
  updated_at
"""


# ==========================================================
# Referrals
# ==========================================================

def insert_referral(conn, *, referrer_id: str, referred_creator_id: str) -> Optional[dict[str, Any]]:
    """None when the referred creator already has a referral."""
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            INSERT INTO app.creator_referrals (referrer_id, referred_creator_id, status)
            VALUES (%s::uuid, %s::uuid, 'pending')
            ON CONFLICT (referred_creator_id) DO NOTHING
            RETURNING {_COLUMNS}
            """,
            (referrer_id, referred_creator_id),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def get_by_referred_creator(conn, referred_creator_id: str) -> Optional[dict[str, Any]]:
    with dict_cursor(conn) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM app.creator_referrals WHERE referred_creator_id = %s::uuid",
            (referred_creator_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def activate(conn, *, referral_id: str, activated_at: datetime, expires_at: datetime) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.creator_referrals
            SET status = 'active', activated_at = %s, expires_at = %s, updated_at = now()
            WHERE id = %s::uuid
              AND status = 'pending'
            """,
            (activated_at, expires_at, referral_id),
        )
        return cur.rowcount == 1


def add_commission_earned(conn, *, referral_id: str, amount_cents: int) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.creator_referrals
            SET commission_earned_cents = commission_earned_cents + %s, updated_at = now()
            WHERE id = %s::uuid
            """,
            (int(amount_cents), referral_id),
        )
        return cur.rowcount == 1


def expire_due(conn, *, now: datetime) -> list[dict[str, Any]]:
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            UPDATE app.creator_referrals
            SET status = 'expired', updated_at = now()
            WHERE status = 'active'
              AND expires_at <= %s
            RETURNING {_COLUMNS}
            """,
            (now,),
        )
        return [dict(r) for r in cur.fetchall()]


# ==========================================================
# Commissions
# ==========================================================

def insert_commission(
    conn,
    *,
    referral_id: str,
    referrer_id: str,
    source_ref: str,
    revenue_cents: int,
    commission_cents: int,
    currency: str,
    earned_at: datetime,
) -> Optional[dict[str, Any]]:
    """Idempotent on source_ref: None if this revenue event was already attributed."""
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            INSERT INTO app.referral_commissions (
              referral_id, referrer_id, source_ref, revenue_cents,
              commission_cents, currency, earned_at
            )
            VALUES (%s::uuid, %s::uuid, %s, %s, %s, %s, %s)
            ON CONFLICT (source_ref) DO NOTHING
            RETURNING id, referral_id, referrer_id, source_ref, revenue_cents,
                      commission_cents, currency, earned_at, payout_id
            """,
            (referral_id, referrer_id, source_ref, int(revenue_cents), int(commission_cents), currency, earned_at),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def list_payable(conn, *, threshold_cents: int, limit: int = 100) -> list[dict[str, Any]]:
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            SELECT referrer_id, currency, SUM(commission_cents)::bigint AS total_cents
            FROM app.referral_commissions
            WHERE payout_id IS NULL
            GROUP BY referrer_id, currency
            HAVING SUM(commission_cents) >= %s
            ORDER BY MIN(earned_at) ASC
            LIMIT %s
            """,
            (int(threshold_cents), limit),
        )
        return [dict(r) for r in cur.fetchall()]


# ==========================================================
# Payouts
# ==========================================================

def create_payout(conn, *, referrer_id: str, currency: str) -> str:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.referral_payouts (referrer_id, currency, amount_cents, status)
            VALUES (%s::uuid, %s, 0, 'pending')
            RETURNING id
            """,
            (referrer_id, currency),
        )
        return str(cur.fetchone()[0])


def claim_commissions(conn, *, payout_id: str, referrer_id: str, currency: str) -> int:
    """
    Attach every unpaid commission of the referrer to the payout. A commission
    already claimed by an overlapping run is skipped. Returns the claimed total.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            WITH claimed AS (
              UPDATE app.referral_commissions
              SET payout_id = %s::uuid
              WHERE referrer_id = %s::uuid
                AND currency = %s
                AND payout_id IS NULL
              RETURNING commission_cents
            )
            SELECT COALESCE(SUM(commission_cents), 0)::bigint FROM claimed
            """,
            (payout_id, referrer_id, currency),
        )
        total = int(cur.fetchone()[0])

        cur.execute(
            "UPDATE app.referral_payouts SET amount_cents = %s, updated_at = now() WHERE id = %s::uuid",
            (total, payout_id),
        )
        return total


def release_payout(conn, *, payout_id: str) -> None:
    with conn.cursor() as cur:
        cur.execute("UPDATE app.referral_commissions SET payout_id = NULL WHERE payout_id = %s::uuid", (payout_id,))
        cur.execute("DELETE FROM app.referral_payouts WHERE id = %s::uuid AND status = 'pending'", (payout_id,))


def finish_payout(
    conn,
    *,
    payout_id: str,
    status: str,
    external_transfer_id: Optional[str] = None,
    failed_transfer_id: Optional[str] = None,
) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.referral_payouts
            SET status = %s,
                external_transfer_id = %s,
                failed_transfer_id = %s::uuid,
                updated_at = now()
            WHERE id = %s::uuid
              AND status = 'pending'
            """,
            (status, external_transfer_id, failed_transfer_id, payout_id),
        )
        return cur.rowcount == 1
