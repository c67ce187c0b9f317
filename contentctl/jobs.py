"""Job state machine.

    pending --claim--> in_progress --succeed--> completed
                                   --fail-----> failed --retry--> pending
    pending --cancel--> cancelled

Each function mutates the given job in place and raises
InvalidTransitionError when the job is not in the state the event needs.
Persistence is left to the caller.
"""

from datetime import datetime
from typing import Optional
from .errors import InvalidTransitionError
from .models import ACTIVE_STATUSES, Artifact, Job, JobStatus


def _require(job: Job, status: JobStatus, event: str) -> None:
    if job.status != status:
        raise InvalidTransitionError(job.id, job.status.value, event)


def _elapsed_ms(start: Optional[datetime], end: datetime) -> int:
    if start is None:
        return 0
    return int((end - start).total_seconds() * 1000)


def claim(job: Job, now: datetime) -> Job:
    _require(job, JobStatus.PENDING, "claim")
    job.status = JobStatus.IN_PROGRESS
    job.executed_at = now
    job.updated_at = now
    return job


def succeed(job: Job, artifact: Artifact, now: datetime) -> Job:
    _require(job, JobStatus.IN_PROGRESS, "complete")
    job.status = JobStatus.COMPLETED
    job.completed_at = now
    job.execution_time_ms = _elapsed_ms(job.executed_at, now)
    job.produced_artifact_id = artifact.id
    job.generated_content = artifact
    job.error = None
    job.error_detail = None
    job.updated_at = now
    return job


def fail(job: Job, error: str, now: datetime, detail: Optional[str] = None) -> Job:
    _require(job, JobStatus.IN_PROGRESS, "fail")
    job.status = JobStatus.FAILED
    job.completed_at = now
    job.execution_time_ms = _elapsed_ms(job.executed_at, now)
    job.error = error
    job.error_detail = detail
    job.updated_at = now
    return job


def should_retry(job: Job) -> bool:
    return job.retry_count < job.max_retries


def retry(job: Job, now: datetime) -> bool:
    """Send a failed job back to pending.

    Returns False, leaving the job failed, once ``max_retries`` is used up.
    """
    _require(job, JobStatus.FAILED, "retry")
    if not should_retry(job):
        return False
    job.retry_count += 1
    job.status = JobStatus.PENDING
    job.error = None
    job.error_detail = None
    job.executed_at = None
    job.completed_at = None
    job.execution_time_ms = None
    job.updated_at = now
    return True


def cancel(job: Job, now: datetime) -> Job:
    _require(job, JobStatus.PENDING, "cancel")
    job.status = JobStatus.CANCELLED
    job.completed_at = now
    job.updated_at = now
    return job


def is_active(job: Job) -> bool:
    return job.status in ACTIVE_STATUSES


def holds_title(job: Job) -> bool:
    """Whether the job still has a claim on its title.

    Pending and running jobs do, and so does a failed job that can still
    be retried.
    """
    if job.status in ACTIVE_STATUSES:
        return True
    return job.status == JobStatus.FAILED and should_retry(job)
