"""
Job storage.

JobStore is the only shared mutable state in the broker. Everything above it
(lifecycle, dispatcher, callbacks, reaper) goes through get/put/delete/iteration,
so the in-memory table can be swapped for a SQL-backed one via JOB_STORE_URL.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional

from sqlmodel import Session, SQLModel, create_engine, select

from chatbroker.models import Job


class JobStore(ABC):
    """Keyed table of jobs. Last write wins on the key; callers supply unique ids."""

    @abstractmethod
    def put(self, job: Job) -> None: ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def delete(self, job_id: str) -> bool: ...

    @abstractmethod
    def all(self) -> List[Job]:
        """Snapshot of every stored job, safe to iterate while others write."""

    def __iter__(self) -> Iterator[Job]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self.all())


class InMemoryJobStore(JobStore):
    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def put(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def all(self) -> List[Job]:
        with self._lock:
            return list(self._jobs.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class SqlJobStore(JobStore):
    """SQLModel-backed store. Returned jobs are detached copies; write back with put()."""

    def __init__(self, url: str):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args)
        SQLModel.metadata.create_all(self.engine)

    def put(self, job: Job) -> None:
        with Session(self.engine, expire_on_commit=False) as s:
            s.merge(job)
            s.commit()

    def get(self, job_id: str) -> Optional[Job]:
        with Session(self.engine, expire_on_commit=False) as s:
            return s.get(Job, job_id)

    def delete(self, job_id: str) -> bool:
        with Session(self.engine) as s:
            job = s.get(Job, job_id)
            if not job:
                return False
            s.delete(job)
            s.commit()
            return True

    def all(self) -> List[Job]:
        with Session(self.engine, expire_on_commit=False) as s:
            return list(s.exec(select(Job)).all())


def make_job_store(url: Optional[str] = None) -> JobStore:
    if url:
        return SqlJobStore(url)
    return InMemoryJobStore()
