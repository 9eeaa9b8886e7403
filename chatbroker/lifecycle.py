"""
Job lifecycle: pending -> processing -> completed | failed.

complete() is not idempotent by default: a second call on the same job
overwrites status, response and error (last writer wins), only completed_at
keeps its first value. With strict_completion the first terminal transition
wins and later calls change nothing.
"""

import logging
import secrets
from typing import Callable, Optional

from chatbroker.errors import JobNotFound
from chatbroker.models import Job, JobStatus, JobView, now_ms
from chatbroker.storage import JobStore

logger = logging.getLogger(__name__)


def new_job_id(clock: Callable[[], int] = now_ms) -> str:
    # timestamp + 64 random bits
    return f"job_{clock()}_{secrets.token_hex(8)}"


class JobLifecycle:
    def __init__(self, store: JobStore, *, clock: Callable[[], int] = now_ms, strict_completion: bool = False):
        self.store = store
        self.clock = clock
        self.strict_completion = strict_completion

    def create(self, user_message: str, session_id: str) -> Job:
        job = Job(
            id=new_job_id(self.clock),
            status=JobStatus.PENDING,
            user_message=user_message,
            session_id=session_id,
            created_at=self.clock(),
        )
        self.store.put(job)
        logger.info("job %s created (session %s)", job.id, session_id)
        return job

    def get(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def mark_processing(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job.status != JobStatus.PENDING:
            logger.debug("job %s is %s; not moving to processing", job_id, job.status.value)
            return job
        job.status = JobStatus.PROCESSING
        self.store.put(job)
        logger.info("job %s processing", job_id)
        return job

    def complete(self, job_id: str, response: Optional[str], success: bool = True, error: Optional[str] = None) -> bool:
        job = self.store.get(job_id)
        if job is None:
            logger.warning("complete() for unknown job %s", job_id)
            return False

        if JobStatus(job.status).is_terminal:
            if self.strict_completion:
                logger.info("job %s already %s; ignoring repeated completion", job_id, job.status.value)
                return True
            logger.warning("job %s already %s; overwriting with a later completion", job_id, job.status.value)

        job.status = JobStatus.COMPLETED if success else JobStatus.FAILED
        job.response = response
        if error is not None:
            job.error = error
        if job.completed_at is None:
            job.completed_at = self.clock()
        self.store.put(job)
        logger.info("job %s %s in %sms", job_id, job.status.value, job.processing_time())
        return True

    def fail(self, job_id: str, error: str) -> bool:
        return self.complete(job_id, None, success=False, error=error)

    def status(self, job_id: str) -> Optional[JobView]:
        job = self.store.get(job_id)
        if job is None:
            return None
        return JobView.of(job, now=self.clock())
