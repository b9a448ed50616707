# recurring/services/ticker.py

"""
BACKGROUND TICK

RecurringTicker.tick() runs one sweep of the scheduler. A guard lock keeps
sweeps from stacking: if the previous tick is still running, the new one
returns None immediately.

With max_workers > 1 the sweep fans out one thread per tenant that has due
work; rules of one tenant always run in a single thread.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from django.conf import settings
from django.db import connection

from accounting.models.tenant import Tenant
from recurring.services.scheduler import RecurringScheduler, RunOutcome, due_tenant_ids

logger = logging.getLogger(__name__)


class RecurringTicker:
    def __init__(
        self,
        scheduler: RecurringScheduler | None = None,
        *,
        interval: int | None = None,
        max_workers: int = 1,
    ):
        self.scheduler = scheduler or RecurringScheduler()
        self.interval = interval or settings.LEDGER["RECURRING"]["TICK_SECONDS"]
        self.max_workers = max(int(max_workers or 1), 1)
        self._guard = threading.Lock()

    @property
    def running(self) -> bool:
        return self._guard.locked()

    def tick(self, *, now: datetime | None = None, dry_run: bool = False) -> list[RunOutcome] | None:
        if not self._guard.acquire(blocking=False):
            logger.info("Recurring tick skipped: previous sweep still running")
            return None
        try:
            if self.max_workers == 1:
                return self.scheduler.run_due(now=now, dry_run=dry_run)
            return self._fan_out(now=now, dry_run=dry_run)
        finally:
            self._guard.release()

    def _fan_out(self, *, now: datetime | None, dry_run: bool) -> list[RunOutcome]:
        tenant_ids = due_tenant_ids(now)
        if not tenant_ids:
            return []

        def sweep(tenant_id: int) -> list[RunOutcome]:
            try:
                tenant = Tenant.objects.get(pk=tenant_id)
                return self.scheduler.run_due(tenant, now=now, dry_run=dry_run)
            finally:
                # worker threads own their DB connection
                connection.close()

        outcomes: list[RunOutcome] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="recurring") as pool:
            for batch in pool.map(sweep, tenant_ids):
                outcomes.extend(batch)
        return outcomes

    def run_forever(self, stop: threading.Event | None = None) -> None:
        stop = stop or threading.Event()
        logger.info("Recurring ticker started (every %ss, %s worker(s))", self.interval, self.max_workers)
        while not stop.is_set():
            outcomes = self.tick()
            if outcomes:
                logger.info("Recurring tick processed %s rule(s)", len(outcomes))
            stop.wait(self.interval)
        logger.info("Recurring ticker stopped")
