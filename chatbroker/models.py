import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from sqlmodel import Field, SQLModel


def now_ms() -> int:
    return int(time.time() * 1000)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(SQLModel, table=True):
    id: str = Field(primary_key=True)
    status: JobStatus = JobStatus.PENDING
    user_message: str = ""
    session_id: str = ""
    response: Optional[str] = None
    error: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)  # epoch ms
    completed_at: Optional[int] = None  # epoch ms, first terminal transition only

    def processing_time(self, now: Optional[int] = None) -> int:
        if self.completed_at is not None:
            return self.completed_at - self.created_at
        return (now if now is not None else now_ms()) - self.created_at


class JobView(SQLModel):
    """Read-only snapshot of a job as returned by the status endpoint."""

    job_id: str
    status: JobStatus
    user_message: str
    response: Optional[str] = None
    error: Optional[str] = None
    created_at: int
    completed_at: Optional[int] = None
    processing_time: int

    @classmethod
    def of(cls, job: Job, now: Optional[int] = None) -> "JobView":
        return cls(
            job_id=job.id,
            status=JobStatus(job.status),
            user_message=job.user_message,
            response=job.response,
            error=job.error,
            created_at=job.created_at,
            completed_at=job.completed_at,
            processing_time=job.processing_time(now),
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status.value,
            "userMessage": self.user_message,
            "response": self.response,
            "error": self.error,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
            "processingTime": self.processing_time,
        }


def _message_id() -> str:
    return secrets.token_hex(5)[:9]


class ChatMessage(SQLModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    id: str = Field(default_factory=_message_id)
