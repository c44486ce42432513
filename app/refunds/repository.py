# app/refunds/repository.py
from __future__ import annotations

from typing import Any, Optional

from db import dict_cursor


_COLUMNS = """
  id,
  user_id,
  subscription_id,
  amount_cents,
  reason,
  status,
  external_refund_id,
  admin_notes,
  decided_by,
  decided_at,
  created_at,
  updated_at
"""


def insert_request(conn, *, user_id: str, subscription_id: str, amount_cents: int, reason: Optional[str]) -> dict[str, Any]:
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            INSERT INTO app.refund_requests (user_id, subscription_id, amount_cents, reason, status)
            VALUES (%s::uuid, %s::uuid, %s, %s, 'pending')
            RETURNING {_COLUMNS}
            """,
            (user_id, subscription_id, int(amount_cents), reason),
        )
        return dict(cur.fetchone())


def get_request(conn, request_id: str, *, for_update: bool = False) -> Optional[dict[str, Any]]:
    lock = "FOR UPDATE" if for_update else ""
    with dict_cursor(conn) as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM app.refund_requests WHERE id = %s::uuid {lock}", (request_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def mark_processed(conn, *, request_id: str, external_refund_id: str, admin_id: str, admin_notes: Optional[str]) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.refund_requests
            SET status = 'processed',
                external_refund_id = %s,
                admin_notes = %s,
                decided_by = %s::uuid,
                decided_at = now(),
                updated_at = now()
            WHERE id = %s::uuid
              AND status = 'pending'
            """,
            (external_refund_id, admin_notes, admin_id, request_id),
        )
        return cur.rowcount == 1


def mark_rejected(conn, *, request_id: str, admin_id: str, admin_notes: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.refund_requests
            SET status = 'rejected',
                admin_notes = %s,
                decided_by = %s::uuid,
                decided_at = now(),
                updated_at = now()
            WHERE id = %s::uuid
              AND status = 'pending'
            """,
            (admin_notes, admin_id, request_id),
        )
        return cur.rowcount == 1
