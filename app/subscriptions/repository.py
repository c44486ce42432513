# app/subscriptions/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from db import dict_cursor


_COLUMNS = """
  id,
  subscriber_id,
  creator_id,
  external_subscription_id,
  status,
  pause_until,
  price_ref,
  cancel_at_period_end,
  current_period_end,
  last_charge_amount_cents,
  last_invoice_id,
  created_at,
  updated_at
"""


# ==========================================================
# Reads
# ==========================================================

def get_open_subscription(conn, *, subscriber_id: str, creator_id: str) -> Optional[dict[str, Any]]:
    """The pair's non-canceled subscription, if any (at most one exists)."""
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.creator_subscriptions
            WHERE subscriber_id = %s::uuid
              AND creator_id = %s::uuid
              AND status <> 'canceled'
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (subscriber_id, creator_id),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def get_subscription(conn, subscription_id: str) -> Optional[dict[str, Any]]:
    with dict_cursor(conn) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM app.creator_subscriptions WHERE id = %s::uuid",
            (subscription_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def get_by_external_id(conn, external_subscription_id: str) -> Optional[dict[str, Any]]:
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.creator_subscriptions
            WHERE external_subscription_id = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (external_subscription_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


# ==========================================================
# Writes
# ==========================================================

def insert_subscription(
    conn,
    *,
    subscriber_id: str,
    creator_id: str,
    external_subscription_id: str,
    price_ref: Optional[str],
    current_period_end: Optional[datetime],
) -> Optional[dict[str, Any]]:
    """
    Insert the pair's subscription after checkout. Returns None if the pair
    already has a non-canceled subscription (unique partial index).
    """
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            INSERT INTO app.creator_subscriptions (
              subscriber_id, creator_id, external_subscription_id,
              status, price_ref, current_period_end
            )
            VALUES (%s::uuid, %s::uuid, %s, 'active', %s, %s)
            ON CONFLICT DO NOTHING
            RETURNING {_COLUMNS}
            """,
            (subscriber_id, creator_id, external_subscription_id, price_ref, current_period_end),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def apply_transition(
    conn,
    *,
    subscription_id: str,
    from_status: str,
    new_status: str,
    pause_until: Optional[datetime],
    price_ref: Optional[str],
    cancel_at_period_end: bool,
    current_period_end: Optional[datetime],
) -> bool:
    """
    Optimistic update: only applies while the row is still in `from_status`.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.creator_subscriptions
            SET
              status = %s,
              pause_until = %s,
              price_ref = %s,
              cancel_at_period_end = %s,
              current_period_end = %s,
              updated_at = now()
            WHERE id = %s::uuid
              AND status = %s
            """,
            (
                new_status,
                pause_until,
                price_ref,
                cancel_at_period_end,
                current_period_end,
                subscription_id,
                from_status,
            ),
        )
        return cur.rowcount == 1


def record_charge(
    conn,
    *,
    subscription_id: str,
    invoice_id: str,
    amount_cents: int,
    current_period_end: Optional[datetime],
) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.creator_subscriptions
            SET
              last_invoice_id = %s,
              last_charge_amount_cents = %s,
              current_period_end = COALESCE(%s, current_period_end),
              updated_at = now()
            WHERE id = %s::uuid
            """,
            (invoice_id, amount_cents, current_period_end, subscription_id),
        )
        return cur.rowcount == 1
