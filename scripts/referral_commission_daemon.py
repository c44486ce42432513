# scripts/referral_commission_daemon.py
from __future__ import annotations

import logging
import time

from app.workers.referral_commission_worker import process_once
from settings import settings


logger = logging.getLogger("referral_commission_daemon")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    interval = max(1, settings.REFERRAL_COMMISSION_INTERVAL_S)
    logger.info("Referral commission daemon starting; interval=%ss", interval)

    while True:
        try:
            summary = process_once()
        except KeyboardInterrupt:
            logger.info("Referral commission daemon exiting")
            raise
        except Exception:
            logger.exception("Referral commission run failed")
        else:
            logger.info(
                "Referral commission run | expired=%s payable=%s sent=%s parked=%s",
                summary.get("expired"),
                summary.get("payable"),
                summary.get("sent", 0),
                summary.get("parked", 0),
            )
        time.sleep(interval)


if __name__ == "__main__":
    main()
