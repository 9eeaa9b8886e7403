"""
Fire-and-forget dispatch of jobs to the workflow engine.

dispatch() returns as soon as the job is marked processing and the send is
scheduled. The send runs detached (FastAPI BackgroundTasks in the app, a
thread pool otherwise); its only way to report failure is failing the job.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Tuple

from chatbroker.engine import EngineClient
from chatbroker.errors import BrokerError
from chatbroker.lifecycle import JobLifecycle
from chatbroker.models import Job

logger = logging.getLogger(__name__)

Schedule = Callable[..., Any]  # schedule(fn, *args), e.g. BackgroundTasks.add_task


class OutboundDispatcher:
    def __init__(self, lifecycle: JobLifecycle, engine: EngineClient, max_workers: int = 8):
        self.lifecycle = lifecycle
        self.engine = engine
        self._executor: Optional[ThreadPoolExecutor] = None
        self._max_workers = max_workers
        self._executor_lock = threading.Lock()

    def _default_schedule(self, fn: Callable[..., Any], *args: Any) -> None:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="dispatch")
            executor = self._executor
        executor.submit(fn, *args)

    def build_payload(self, job: Job, callback_url: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.engine.build_payload(
            job.user_message,
            job.session_id,
            jobId=job.id,
            callbackUrl=callback_url,
            metadata=metadata or None,
        )

    def dispatch(
        self,
        job: Job,
        callback_url: str,
        schedule: Optional[Schedule] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = self.build_payload(job, callback_url, metadata)
        self.lifecycle.mark_processing(job.id)
        (schedule or self._default_schedule)(self._send, job.id, payload)
        logger.info("job %s dispatched, callback %s", job.id, callback_url)
        return payload

    def _send(self, job_id: str, payload: Dict[str, Any]) -> None:
        try:
            self.engine.fire(payload)
        except BrokerError as e:
            logger.warning("dispatch of job %s failed: %s", job_id, e.message)
            self.lifecycle.fail(job_id, e.message)
        except Exception as e:
            logger.exception("unexpected error dispatching job %s", job_id)
            self.lifecycle.fail(job_id, str(e))

    def ping(self) -> Tuple[int, bool]:
        """(latency_ms, reachable). Touches no job."""
        return self.engine.ping()

    def shutdown(self, wait: bool = False) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
