"""
Client-side status polling.

    poller = StatusPoller(client.get_status, interval_ms=1000, max_wait_ms=30000,
                          on_complete=print, abort=client.close)
    job = poller.run(job_id)     # blocking; or poller.start(job_id) for a thread

Before each query the elapsed time is checked against max_wait_ms; exceeding
it fails with PollingTimeout. cancel() is silent: run() returns None and no
callback fires, even when a query is still blocked on the network: each query
runs on a worker thread and run() stops waiting for it as soon as cancel() is
called (the abort hook, e.g. BrokerClient.close, then drops its connection).
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from chatbroker.errors import BrokerError, JobFailed, PollingTimeout
from chatbroker.models import JobStatus

logger = logging.getLogger(__name__)

JobDict = Dict[str, Any]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class StatusPoller:
    def __init__(
        self,
        fetch_status: Callable[[str], JobDict],
        *,
        interval_ms: int = 1000,
        max_wait_ms: int = 30000,
        on_status_change: Optional[Callable[[JobDict], None]] = None,
        on_complete: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        abort: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = _monotonic_ms,
        wait: Optional[Callable[[float], bool]] = None,
    ):
        self.fetch_status = fetch_status
        self.interval_ms = interval_ms
        self.max_wait_ms = max_wait_ms
        self.on_status_change = on_status_change
        self.on_complete = on_complete
        self.on_error = on_error
        self.abort = abort
        self.clock = clock
        self._cancelled = threading.Event()
        self._wakeup = threading.Event()  # query finished or cancel()
        # wait(seconds) -> True when cancelled during the wait
        self._wait = wait or self._cancelled.wait
        self._thread: Optional[threading.Thread] = None
        self.queries = 0
        self.current: Optional[JobDict] = None
        self.result: Optional[JobDict] = None
        self.error: Optional[BrokerError] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._wakeup.set()
        if self.abort is not None:
            try:
                self.abort()
            except Exception:
                logger.debug("abort hook failed", exc_info=True)

    def _fail(self, err: BrokerError) -> BrokerError:
        self.error = err
        if self.on_error is not None:
            self.on_error(err.message)
        return err

    def _fetch(self, executor: ThreadPoolExecutor, job_id: str) -> Optional[JobDict]:
        """One status query on the worker; None as soon as cancel() fires."""
        self._wakeup.clear()
        if self.cancelled:
            return None
        future = executor.submit(self.fetch_status, job_id)
        future.add_done_callback(lambda _: self._wakeup.set())
        self._wakeup.wait()
        if self.cancelled:
            return None
        return future.result()

    def run(self, job_id: str) -> Optional[JobDict]:
        """Poll until terminal. Returns the completed job, or None if cancelled."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"poll-{job_id}")
        try:
            return self._poll(executor, job_id)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _poll(self, executor: ThreadPoolExecutor, job_id: str) -> Optional[JobDict]:
        started = self.clock()
        last_status = None
        while not self.cancelled:
            elapsed = self.clock() - started
            if elapsed > self.max_wait_ms:
                raise self._fail(PollingTimeout("Polling timeout - request took too long", job_id=job_id))

            self.queries += 1
            try:
                job = self._fetch(executor, job_id)
            except BrokerError as e:
                if self.cancelled:
                    return None
                raise self._fail(e)
            except Exception as e:
                if self.cancelled:
                    return None
                raise self._fail(BrokerError(f"Polling error: {e}", job_id=job_id)) from e
            if self.cancelled:
                return None

            self.current = job
            status = job.get("status")
            if status != last_status:
                last_status = status
                logger.debug("job %s status: %s (%sms)", job_id, status, job.get("processingTime"))
                if self.on_status_change is not None:
                    self.on_status_change(job)

            if status == JobStatus.COMPLETED.value:
                self.result = job
                if self.on_complete is not None:
                    self.on_complete(job.get("response") or "")
                return job
            if status == JobStatus.FAILED.value:
                raise self._fail(JobFailed(job.get("error") or "Chat processing failed", job_id=job_id))

            if self._wait(self.interval_ms / 1000):
                return None
        return None

    # ---------- background ----------
    def _run_quietly(self, job_id: str) -> None:
        try:
            self.run(job_id)
        except BrokerError:
            pass  # already reported through on_error and self.error

    def start(self, job_id: str) -> threading.Thread:
        self._thread = threading.Thread(target=self._run_quietly, args=(job_id,), name=f"poll-{job_id}", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
