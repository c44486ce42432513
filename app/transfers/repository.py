# app/transfers/repository.py
from __future__ import annotations

from typing import Any, Optional

from psycopg2.extras import Json

from db import dict_cursor


_COLUMNS = """
  id,
  creator_id,
  kind,
  subscription_id,
  invoice_id,
  referral_payout_id,
  amount_cents,
  currency,
  error_message,
  retry_count,
  last_retry_at,
  resolved_at,
  external_transfer_id,
  metadata,
  created_at,
  updated_at
"""

# Retry selection: unresolved, under the cap, past its backoff.
_DUE_PREDICATE = """
  resolved_at IS NULL
  AND retry_count < %(max_attempts)s
  AND (
    last_retry_at IS NULL
    OR last_retry_at <= now() - make_interval(secs => %(base_backoff_s)s * power(2, GREATEST(retry_count - 1, 0)))
  )
"""


# ==========================================================
# Inserts
# ==========================================================

def insert_failed_transfer(
    conn,
    *,
    creator_id: str,
    kind: str,
    amount_cents: int,
    currency: str,
    error_message: str,
    subscription_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
    referral_payout_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Optional[dict[str, Any]]:
    """
    Returns None when an unresolved record already exists for the same
    subscription + invoice (one actively retrying transfer per cycle).
    """
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            INSERT INTO app.failed_transfers (
              creator_id, kind, subscription_id, invoice_id, referral_payout_id,
              amount_cents, currency, error_message, metadata
            )
            VALUES (%s::uuid, %s, %s::uuid, %s, %s::uuid, %s, %s, %s, %s::jsonb)
            ON CONFLICT DO NOTHING
            RETURNING {_COLUMNS}
            """,
            (
                creator_id,
                kind,
                subscription_id,
                invoice_id,
                referral_payout_id,
                int(amount_cents),
                currency,
                error_message,
                Json(metadata or {}),
            ),
        )
        row = cur.fetchone()
        return dict(row) if row else None


# ==========================================================
# Claiming for the retry engine
# ==========================================================

def list_due_ids(conn, *, batch_size: int, max_attempts: int, base_backoff_s: int) -> list[str]:
    """Oldest first; ties broken by id so the order is total."""
    with conn.cursor() as cur:
        cur.execute(
            f"""
            SELECT id
            FROM app.failed_transfers
            WHERE {_DUE_PREDICATE}
            ORDER BY created_at ASC, id ASC
            LIMIT %(batch_size)s
            """,
            {"max_attempts": max_attempts, "base_backoff_s": base_backoff_s, "batch_size": batch_size},
        )
        return [str(r[0]) for r in cur.fetchall()]


def lock_for_retry(conn, transfer_id: str, *, max_attempts: int) -> Optional[dict[str, Any]]:
    """
    Lock one record for this transaction. None if another run holds it, or
    it was resolved / exhausted since it was listed.
    """
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.failed_transfers
            WHERE id = %s::uuid
              AND resolved_at IS NULL
              AND retry_count < %s
            FOR UPDATE SKIP LOCKED
            """,
            (transfer_id, max_attempts),
        )
        row = cur.fetchone()
        return dict(row) if row else None


# ==========================================================
# Updates (optimistic on retry_count)
# ==========================================================

def mark_resolved(conn, *, transfer_id: str, expected_retry_count: int, external_transfer_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.failed_transfers
            SET
              resolved_at = now(),
              external_transfer_id = %s,
              metadata = COALESCE(metadata, '{}'::jsonb) || jsonb_build_object('resolved_transfer_id', %s::text),
              updated_at = now()
            WHERE id = %s::uuid
              AND resolved_at IS NULL
              AND retry_count = %s
            """,
            (external_transfer_id, external_transfer_id, transfer_id, expected_retry_count),
        )
        return cur.rowcount == 1


def record_retry_failure(
    conn,
    *,
    transfer_id: str,
    expected_retry_count: int,
    error_message: str,
    max_attempts: int,
) -> Optional[int]:
    """Returns the new retry_count, or None if the row moved underneath us."""
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.failed_transfers
            SET
              retry_count = retry_count + 1,
              last_retry_at = now(),
              error_message = %s,
              updated_at = now()
            WHERE id = %s::uuid
              AND resolved_at IS NULL
              AND retry_count = %s
              AND retry_count < %s
            RETURNING retry_count
            """,
            (error_message, transfer_id, expected_retry_count, max_attempts),
        )
        row = cur.fetchone()
        return int(row[0]) if row else None


# ==========================================================
# Reads
# ==========================================================

def get_failed_transfer(conn, transfer_id: str) -> Optional[dict[str, Any]]:
    with dict_cursor(conn) as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM app.failed_transfers WHERE id = %s::uuid", (transfer_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def get_for_invoice(conn, *, subscription_id: str, invoice_id: str) -> Optional[dict[str, Any]]:
    """Any record (resolved or not) already covering this billing cycle."""
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.failed_transfers
            WHERE subscription_id = %s::uuid
              AND invoice_id = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (subscription_id, invoice_id),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def list_unresolved(conn, *, exhausted_only: bool, max_attempts: int, limit: int = 100) -> list[dict[str, Any]]:
    exhausted_sql = ""
    params: list[Any] = []
    if exhausted_only:
        exhausted_sql = "AND retry_count >= %s"
        params.append(max_attempts)
    params.append(limit)

    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.failed_transfers
            WHERE resolved_at IS NULL
              {exhausted_sql}
            ORDER BY created_at ASC
            LIMIT %s
            """,
            tuple(params),
        )
        return [dict(r) for r in cur.fetchall()]
