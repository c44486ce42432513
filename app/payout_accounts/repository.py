# app/payout_accounts/repository.py
from __future__ import annotations

from typing import Any, Optional

from db import dict_cursor


_COLUMNS = """
  creator_id,
  external_account_id,
  onboarding_complete,
  payouts_enabled,
  charges_enabled,
  status_refreshed_at,
  created_at,
  updated_at
"""


def get_account(conn, creator_id: str) -> Optional[dict[str, Any]]:
    with dict_cursor(conn) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM app.creator_payout_accounts WHERE creator_id = %s::uuid",
            (creator_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def get_account_by_external_id(conn, external_account_id: str) -> Optional[dict[str, Any]]:
    with dict_cursor(conn) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM app.creator_payout_accounts WHERE external_account_id = %s",
            (external_account_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def ensure_account_row(conn, creator_id: str) -> None:
    """Create the local record on first setup attempt; no-op afterwards."""
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.creator_payout_accounts (creator_id)
            VALUES (%s::uuid)
            ON CONFLICT (creator_id) DO NOTHING
            """,
            (creator_id,),
        )


def attach_external_account(conn, *, creator_id: str, external_account_id: str) -> bool:
    """
    Link the processor account. Only succeeds while no account is linked,
    so two concurrent onboarding calls cannot both attach.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.creator_payout_accounts
            SET external_account_id = %s,
                updated_at = now()
            WHERE creator_id = %s::uuid
              AND external_account_id IS NULL
            """,
            (external_account_id, creator_id),
        )
        return cur.rowcount == 1


def update_flags(
    conn,
    *,
    creator_id: str,
    external_account_id: str,
    onboarding_complete: bool,
    payouts_enabled: bool,
    charges_enabled: bool,
) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.creator_payout_accounts
            SET onboarding_complete = %s,
                payouts_enabled = %s,
                charges_enabled = %s,
                status_refreshed_at = now(),
                updated_at = now()
            WHERE creator_id = %s::uuid
              AND external_account_id = %s
            """,
            (onboarding_complete, payouts_enabled, charges_enabled, creator_id, external_account_id),
        )
        return cur.rowcount == 1
