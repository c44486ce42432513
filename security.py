from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt, JWTError

from settings import settings

ACCESS_TOKEN_MINUTES = 60


# -----------------------
# Access tokens (JWT)
# -----------------------
def create_access_token(sub: str, minutes: int = ACCESS_TOKEN_MINUTES, **claims: Any) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        return {}
