"""Background execution of webhook delivery tasks.

Deliveries must outlive the HTTP request that triggered them, so tasks are
handed to a scheduler with an optional delay (used for retry backoff).
The production implementation runs on APScheduler's ``BackgroundScheduler``
with a thread pool; tests substitute a manual scheduler.
"""
from __future__ import annotations
import datetime
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)


class DeliveryScheduler(ABC):
    """Runs ``handler(task)`` after ``delay_seconds`` on a worker."""

    def __init__(self):
        self.handler: Callable[[Any], None] | None = None

    def bind(self, handler: Callable[[Any], None]) -> None:
        self.handler = handler

    @abstractmethod
    def submit(self, task: Any, delay_seconds: float = 0.0) -> None:
        ...

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def shutdown(self, wait: bool = True) -> None:
        ...

    @property
    @abstractmethod
    def running(self) -> bool:
        ...


class BackgroundDeliveryScheduler(DeliveryScheduler):
    """APScheduler-backed scheduler: one date-triggered job per attempt."""

    def __init__(self, max_workers: int = 8):
        super().__init__()
        self._lock = threading.RLock()
        self._scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": ThreadPoolExecutor(max_workers=max_workers)},
            job_defaults={"coalesce": False, "max_instances": 1},
            timezone="UTC",
        )

    def submit(self, task: Any, delay_seconds: float = 0.0) -> None:
        if self.handler is None:
            raise RuntimeError("Scheduler has no delivery handler bound")
        run_at = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=delay_seconds)
        self._scheduler.add_job(
            self.handler,
            trigger=DateTrigger(run_date=run_at),
            args=[task],
            id=f"webhook-{uuid.uuid4()}",
            misfire_grace_time=None,
        )

    def start(self) -> None:
        with self._lock:
            if not self._scheduler.running:
                self._scheduler.start()
                logger.info("Webhook delivery scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
                logger.info("Webhook delivery scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler.running
