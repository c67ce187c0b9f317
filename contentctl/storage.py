"""Persistent job and campaign storage."""

import json
import os
import sys
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional
from . import jobs as job_states
from .errors import JobNotFoundError
from .models import CampaignConfig, Job, JobStatus

# Handle platform-specific locking
if sys.platform == "win32":
    import msvcrt
else:
    import fcntl


class JobRepository:
    """Store semantics shared by every backend.

    Subclasses only move raw records in and out (``_load_*``/``_save_*``)
    and may take a process-wide lock in ``_acquire``/``_release``. Every
    read-modify-write here runs under ``locked()``, which makes the store
    single-writer.
    """

    def __init__(self):
        self._thread_lock = threading.RLock()
        self._depth = 0

    def _load_jobs(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def _save_jobs(self, jobs: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    def _load_campaign(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _save_campaign(self, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _acquire(self) -> None:
        pass

    def _release(self) -> None:
        pass

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the store lock. Re-entrant within a thread."""
        with self._thread_lock:
            if self._depth == 0:
                self._acquire()
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._release()

    # Jobs

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        with self.locked():
            for job_data in self._load_jobs():
                if job_data["id"] == job_id:
                    return Job(**job_data)
        return None

    def require_job(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def add_jobs(self, new_jobs: Iterable[Job]) -> None:
        with self.locked():
            jobs = self._load_jobs()
            jobs.extend(job.model_dump(mode="json") for job in new_jobs)
            self._save_jobs(jobs)

    def add_job(self, job: Job) -> None:
        self.add_jobs([job])

    def update_job(self, job: Job) -> None:
        """Update an existing job."""
        with self.locked():
            jobs = self._load_jobs()
            for i, job_data in enumerate(jobs):
                if job_data["id"] == job.id:
                    jobs[i] = job.model_dump(mode="json")
                    self._save_jobs(jobs)
                    return
        raise JobNotFoundError(job.id)

    def get_all_jobs(self) -> List[Job]:
        with self.locked():
            return [Job(**job_data) for job_data in self._load_jobs()]

    def find_jobs(
        self,
        statuses: Optional[Iterable[JobStatus]] = None,
        batch_id: Optional[str] = None,
    ) -> List[Job]:
        wanted = None if statuses is None else {JobStatus(s).value for s in statuses}
        result = []
        with self.locked():
            for job_data in self._load_jobs():
                if wanted is not None and job_data["status"] not in wanted:
                    continue
                if batch_id is not None and job_data.get("batch_id") != batch_id:
                    continue
                result.append(Job(**job_data))
        return result

    def get_jobs_by_status(self, status: JobStatus) -> List[Job]:
        return self.find_jobs(statuses=[status])

    def get_due_jobs(self, now: datetime, limit: int) -> List[Job]:
        """Pending jobs whose time has come, oldest first."""
        due = [job for job in self.get_jobs_by_status(JobStatus.PENDING) if job.scheduled_for <= now]
        due.sort(key=lambda job: job.scheduled_for)
        return due[:limit]

    def get_jobs_by_batch(self, batch_id: str) -> List[Job]:
        members = self.find_jobs(batch_id=batch_id)
        members.sort(key=lambda job: job.batch_index)
        return members

    def claim_job(self, job_id: str, now: datetime) -> Optional[Job]:
        """Move a job from pending to in_progress if nobody beat us to it.

        Returns the claimed job, or None when it is missing or no longer
        pending.
        """
        with self.locked():
            jobs = self._load_jobs()
            for i, job_data in enumerate(jobs):
                if job_data["id"] != job_id:
                    continue
                if job_data["status"] != JobStatus.PENDING.value:
                    return None
                job = job_states.claim(Job(**job_data), now)
                jobs[i] = job.model_dump(mode="json")
                self._save_jobs(jobs)
                return job
        return None

    def cancel_pending(self, now: datetime) -> List[Job]:
        """Cancel every job still pending; running jobs are left alone."""
        cancelled = []
        with self.locked():
            jobs = self._load_jobs()
            for i, job_data in enumerate(jobs):
                if job_data["status"] != JobStatus.PENDING.value:
                    continue
                job = job_states.cancel(Job(**job_data), now)
                jobs[i] = job.model_dump(mode="json")
                cancelled.append(job)
            if cancelled:
                self._save_jobs(jobs)
        return cancelled

    # Campaign

    def get_campaign(self) -> CampaignConfig:
        """Load the campaign, creating it with defaults on first use."""
        with self.locked():
            data = self._load_campaign()
            if data is None:
                campaign = CampaignConfig()
                self._save_campaign(campaign.model_dump(mode="json"))
                return campaign
        return CampaignConfig(**data)

    def save_campaign(self, campaign: CampaignConfig) -> None:
        with self.locked():
            self._save_campaign(campaign.model_dump(mode="json"))

    def get_stats(self) -> Dict[str, int]:
        """Get job counts per status."""
        stats = {status.value: 0 for status in JobStatus}
        with self.locked():
            jobs = self._load_jobs()
        for job_data in jobs:
            state = job_data.get("status", JobStatus.PENDING.value)
            if state in stats:
                stats[state] += 1
        stats["total"] = len(jobs)
        return stats


class Storage(JobRepository):
    """File-based storage with an exclusive store lock."""

    def __init__(self, data_dir: str = ".contentctl"):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.jobs_file = self.data_dir / "jobs.json"
        self.campaign_file = self.data_dir / "campaign.json"
        self.lock_file = self.data_dir / "store.lock"
        self._lock_fd: Optional[int] = None

        if not self.jobs_file.exists():
            self._write_json(self.jobs_file, [])

    def _write_json(self, file_path: Path, data: Any) -> None:
        """Write data to JSON file with atomic write."""
        temp_file = file_path.with_suffix(".tmp")
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2, default=str)
        temp_file.replace(file_path)

    def _read_json(self, file_path: Path, default: Any) -> Any:
        if not file_path.exists():
            return default
        with open(file_path, "r") as f:
            return json.load(f)

    def _load_jobs(self) -> List[Dict[str, Any]]:
        return self._read_json(self.jobs_file, [])

    def _save_jobs(self, jobs: List[Dict[str, Any]]) -> None:
        self._write_json(self.jobs_file, jobs)

    def _load_campaign(self) -> Optional[Dict[str, Any]]:
        return self._read_json(self.campaign_file, None)

    def _save_campaign(self, data: Dict[str, Any]) -> None:
        self._write_json(self.campaign_file, data)

    def _acquire(self) -> None:
        fd = os.open(str(self.lock_file), os.O_CREAT | os.O_RDWR, 0o644)
        try:
            if sys.platform == "win32":
                msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError:
            os.close(fd)
            raise
        self._lock_fd = fd

    def _release(self) -> None:
        fd, self._lock_fd = self._lock_fd, None
        if fd is None:
            return
        try:
            if sys.platform == "win32":
                os.lseek(fd, 0, os.SEEK_SET)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


class MemoryStorage(JobRepository):
    """In-process storage with the same semantics as ``Storage``."""

    def __init__(self):
        super().__init__()
        self._jobs: List[Dict[str, Any]] = []
        self._campaign: Optional[Dict[str, Any]] = None

    def _load_jobs(self) -> List[Dict[str, Any]]:
        return [dict(job_data) for job_data in self._jobs]

    def _save_jobs(self, jobs: List[Dict[str, Any]]) -> None:
        self._jobs = [dict(job_data) for job_data in jobs]

    def _load_campaign(self) -> Optional[Dict[str, Any]]:
        return None if self._campaign is None else json.loads(json.dumps(self._campaign))

    def _save_campaign(self, data: Dict[str, Any]) -> None:
        self._campaign = json.loads(json.dumps(data))
