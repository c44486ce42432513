# app/transfers/retry_policy.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from settings import settings


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry for failed transfers: at most `max_attempts` retries,
    exponential backoff from the last attempt (base, 2*base, 4*base, ...).
    The SQL in transfers.repository encodes the same rule.
    """

    max_attempts: int = 3
    base_backoff_s: int = 300

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.TRANSFER_RETRY_MAX_ATTEMPTS,
            base_backoff_s=settings.TRANSFER_RETRY_BASE_BACKOFF_S,
        )

    def backoff_for(self, retry_count: int) -> timedelta:
        if retry_count <= 0:
            return timedelta(0)
        return timedelta(seconds=self.base_backoff_s * (2 ** (retry_count - 1)))

    def exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_attempts

    def is_due(self, retry_count: int, last_retry_at: Optional[datetime], now: datetime) -> bool:
        if self.exhausted(retry_count):
            return False
        if last_retry_at is None:
            return True
        return last_retry_at + self.backoff_for(retry_count) <= now
