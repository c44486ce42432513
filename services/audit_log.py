from __future__ import annotations

import logging
from typing import Any

from psycopg2.extras import Json

from services.observability import get_request_id

logger = logging.getLogger("creatorpay.audit")


def write_audit_log(
    conn,
    *,
    actor_user_id: str,
    action: str,
    target_type: str,
    target_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.audit_log (actor_user_id, action, target_type, target_id, metadata, request_id)
            VALUES (%s::uuid, %s, %s, %s, %s::jsonb, %s);
            """,
            (
                actor_user_id,
                action,
                target_type,
                target_id,
                Json(metadata or {}),
                get_request_id(),
            ),
        )
    logger.info("audit action=%s target=%s:%s actor=%s", action, target_type, target_id, actor_user_id)
