# Overview: In-process daily trigger for the monthly billing pass.

"""
Runs billing_service.process_monthly_billing once a day at
BILLING_SCHEDULER_HOUR (UTC) on a daemon thread.

Deployments that already have cron can leave BILLING_SCHEDULER_ENABLED off
and call `flask billing run` instead; the billing pass is idempotent per
period either way.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from ..extensions import db
from ..time_utils import utcnow
from . import billing_service

logger = logging.getLogger(__name__)


def seconds_until(hour: int, now: datetime) -> float:
    """Seconds from `now` to the next HH:00:00 (today if still ahead, else tomorrow)."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class BillingScheduler:
    def __init__(self, app, *, hour: int | None = None):
        self.app = app
        self.hour = app.config.get("BILLING_SCHEDULER_HOUR", 2) if hour is None else hour
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            logger.warning("Billing scheduler is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="billing-scheduler", daemon=True)
        self._thread.start()
        logger.info("Billing scheduler started - will run daily at %02d:00 UTC", self.hour)

    def stop(self, timeout: float = 5.0) -> None:
        if not self._thread:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Billing scheduler stopped")

    def run_once(self, now: datetime | None = None) -> int:
        """One billing pass inside an app context. Errors are logged, never raised."""
        with self.app.app_context():
            logger.info("Starting scheduled billing processing")
            try:
                created = billing_service.process_monthly_billing(now=now)
            except Exception:
                db.session.rollback()
                logger.exception("Error in scheduled billing processing")
                return 0
            finally:
                db.session.remove()
            logger.info("Scheduled billing processing completed (%s payment records)", created)
            return created

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            if self._stop_event.wait(seconds_until(self.hour, utcnow())):
                break
            self.run_once()
