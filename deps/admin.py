# deps/admin.py
from fastapi import Depends, HTTPException, status

from db import get_conn
from deps.auth import get_current_user, CurrentUser


def _has_admin_role(conn, user_id) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            "SELECT 1 FROM app.user_roles WHERE user_id = %s::uuid AND role = 'admin' LIMIT 1;",
            (str(user_id),),
        )
        return cur.fetchone() is not None


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    with get_conn() as conn:
        is_admin = _has_admin_role(conn, user.user_id)

    if not is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_REQUIRED",
        )
    return user
