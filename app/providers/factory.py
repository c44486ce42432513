# app/providers/factory.py
from __future__ import annotations

import logging
from typing import Any, Dict

from settings import settings

logger = logging.getLogger("creatorpay.providers")

_PROCESSOR_CACHE: Dict[str, Any] = {}


def get_processor(mode: str | None = None):
    """
    Return the configured PaymentProcessor (cached per mode).
    PROCESSOR_MODE=mock gives the in-memory processor for dev/sandbox.
    """
    key = (mode or settings.PROCESSOR_MODE or "").strip().lower()
    if key in _PROCESSOR_CACHE:
        return _PROCESSOR_CACHE[key]

    if key == "stripe":
        from app.providers.stripe_processor import StripeProcessor
        processor = StripeProcessor()
    elif key == "mock":
        from app.providers.mock import MockProcessor
        processor = MockProcessor()
    else:
        raise RuntimeError(f"Unsupported PROCESSOR_MODE: {key!r}")

    logger.info("payment processor initialized mode=%s", key)
    _PROCESSOR_CACHE[key] = processor
    return processor


def reset_processor_cache() -> None:
    _PROCESSOR_CACHE.clear()
