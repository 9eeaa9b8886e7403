"""
Retention sweep for finished and abandoned jobs.

A job is expired when now - created_at > max_age_ms, whatever its status:
stuck pending/processing jobs are reclaimed the same way as finished ones.
"""

import logging
import threading
from typing import Callable, Iterable, List, Optional

from chatbroker.models import Job, now_ms
from chatbroker.storage import JobStore

logger = logging.getLogger(__name__)


def expired_job_ids(jobs: Iterable[Job], now: int, max_age_ms: int) -> List[str]:
    return [job.id for job in jobs if now - job.created_at > max_age_ms]


def sweep(store: JobStore, max_age_ms: int, now: Optional[int] = None) -> List[str]:
    now = now_ms() if now is None else now
    expired = expired_job_ids(store.all(), now, max_age_ms)
    for job_id in expired:
        store.delete(job_id)
    if expired:
        logger.info("reaped %d job(s) older than %sms", len(expired), max_age_ms)
    return expired


class Reaper:
    """Runs sweep() every interval_seconds on a daemon thread until stop()."""

    def __init__(
        self,
        store: JobStore,
        max_age_ms: int,
        interval_seconds: float,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.max_age_ms = max_age_ms
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> List[str]:
        return sweep(self.store, self.max_age_ms, self.clock())

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("job sweep failed")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="job-reaper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
