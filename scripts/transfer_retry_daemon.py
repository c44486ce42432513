# scripts/transfer_retry_daemon.py
from __future__ import annotations

import logging
import time

from app.workers.transfer_retry_worker import process_once
from settings import settings


logger = logging.getLogger("transfer_retry_daemon")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    interval = max(1, settings.TRANSFER_RETRY_INTERVAL_S)
    logger.info("Transfer retry daemon starting; interval=%ss", interval)

    while True:
        try:
            summary = process_once()
        except KeyboardInterrupt:
            logger.info("Transfer retry daemon exiting")
            raise
        except Exception:
            # a failed run does not stop the schedule
            logger.exception("Transfer retry run failed")
        else:
            logger.info(
                "Transfer retry run | processed=%s resolved=%s failed=%s exhausted=%s skipped_disabled=%s",
                summary.get("processed"),
                summary.get("resolved", 0),
                summary.get("failed", 0),
                summary.get("exhausted", 0),
                summary.get("skipped_payouts_disabled", 0),
            )
        time.sleep(interval)


if __name__ == "__main__":
    main()
