import time

from chatbroker.models import Job, JobStatus
from chatbroker.reaper import Reaper, expired_job_ids, sweep
from chatbroker.storage import InMemoryJobStore

NOW = 10_000_000
MAX_AGE = 60_000


def _store(*jobs):
    store = InMemoryJobStore()
    for job in jobs:
        store.put(job)
    return store


def _job(job_id, age_ms, status=JobStatus.COMPLETED):
    return Job(id=job_id, status=status, created_at=NOW - age_ms)


def test_expired_job_ids_is_pure():
    jobs = [_job("old", MAX_AGE + 1), _job("edge", MAX_AGE), _job("young", 5)]
    assert expired_job_ids(jobs, NOW, MAX_AGE) == ["old"]
    assert expired_job_ids(jobs, NOW, MAX_AGE) == ["old"]
    assert [j.id for j in jobs] == ["old", "edge", "young"]


def test_sweep_removes_only_older_than_threshold():
    store = _store(_job("old", MAX_AGE + 1), _job("edge", MAX_AGE), _job("young", 0))

    removed = sweep(store, MAX_AGE, NOW)

    assert removed == ["old"]
    assert store.get("old") is None
    assert store.get("edge") is not None
    assert store.get("young") is not None


def test_sweep_reclaims_stuck_jobs_regardless_of_status():
    store = _store(
        _job("stuck-pending", MAX_AGE * 2, JobStatus.PENDING),
        _job("stuck-processing", MAX_AGE * 2, JobStatus.PROCESSING),
        _job("failed", MAX_AGE * 2, JobStatus.FAILED),
    )
    assert sorted(sweep(store, MAX_AGE, NOW)) == ["failed", "stuck-pending", "stuck-processing"]
    assert len(store) == 0


def test_reaper_thread_sweeps_periodically():
    store = _store(_job("old", MAX_AGE + 1))
    reaper = Reaper(store, MAX_AGE, interval_seconds=0.01, clock=lambda: NOW)

    reaper.start()
    try:
        deadline = time.monotonic() + 2
        while len(store) and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        reaper.stop(timeout=2)

    assert len(store) == 0


def test_run_once_uses_clock():
    store = _store(_job("old", MAX_AGE + 1))
    reaper = Reaper(store, MAX_AGE, interval_seconds=60, clock=lambda: NOW - 10)
    assert reaper.run_once() == []
