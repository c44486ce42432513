#app/webhooks/repository.py
from __future__ import annotations

from typing import Any
from psycopg2.extensions import connection as PGConn
from psycopg2.extras import Json


def record_event(
    conn: PGConn,
    *,
    provider: str,
    event_id: str,
    event_type: str,
    request_id: str | None = None,
    payload_summary: dict[str, Any] | None = None,
) -> bool:
    """
    Remember a processor event. False when the event id was already seen
    (processors deliver at least once).
    NOTE: caller commits.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.webhook_events (provider, event_id, event_type, request_id, payload_summary)
            VALUES (%s, %s, %s, %s, %s::jsonb)
            ON CONFLICT (provider, event_id) DO NOTHING
            """,
            (provider, event_id, event_type, request_id, Json(payload_summary or {})),
        )
        return cur.rowcount == 1


def mark_processed(conn: PGConn, *, provider: str, event_id: str, outcome: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.webhook_events
            SET outcome = %s, processed_at = now()
            WHERE provider = %s AND event_id = %s
            """,
            (outcome, provider, event_id),
        )
