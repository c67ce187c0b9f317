"""Job queue management."""

import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Set
from . import jobs as job_states
from .clock import SystemClock
from .errors import InvalidRequestError, RetryExhaustedError
from .models import Artifact, CampaignConfig, Job, JobPage, JobStatus, PlannedJob
from .planner import campaign_day, day_bounds
from .storage import JobRepository
from .titles import TitlePool

logger = logging.getLogger(__name__)


class JobQueue:
    """Job operations that need the store, built on the pure state machine."""

    def __init__(self, storage: JobRepository, clock=None):
        self.storage = storage
        self.clock = clock or SystemClock()

    def enqueue(self, planned: Iterable[PlannedJob], max_retries: int = 3) -> List[Job]:
        """Create jobs from a plan."""
        now = self.clock.now()
        created = [
            Job(
                title_id=p.title_id,
                title_text=p.title_text,
                scheduled_for=p.scheduled_for,
                batch_id=p.batch_id,
                batch_index=p.batch_index,
                max_retries=max_retries,
                created_at=now,
                updated_at=now,
            )
            for p in planned
        ]
        if created:
            self.storage.add_jobs(created)
        return created

    def scheduled_today_count(self, campaign: CampaignConfig) -> int:
        """Jobs of any status scheduled within the campaign's current day."""
        start, end = day_bounds(campaign, campaign_day(campaign, self.clock.now()))
        return sum(1 for job in self.storage.get_all_jobs() if start <= job.scheduled_for < end)

    def outstanding_count(self) -> int:
        return len(self.storage.find_jobs(statuses=[JobStatus.PENDING, JobStatus.IN_PROGRESS]))

    def reserved_title_ids(self) -> Set[str]:
        """Titles held by jobs that may still produce content."""
        return {
            job.title_id
            for job in self.storage.get_all_jobs()
            if job.title_id and job_states.holds_title(job)
        }

    def get_due_jobs(self, limit: int) -> List[Job]:
        return self.storage.get_due_jobs(self.clock.now(), limit)

    def claim(self, job_id: str) -> Optional[Job]:
        return self.storage.claim_job(job_id, self.clock.now())

    def complete(self, job_id: str, artifact: Artifact) -> Job:
        """Mark a job completed and credit its title and the campaign."""
        now = self.clock.now()
        with self.storage.locked():
            job = job_states.succeed(self.storage.require_job(job_id), artifact, now)
            campaign = self.storage.get_campaign()
            if job.title_id and not TitlePool(campaign).mark_used(job.title_id, artifact.id, now):
                logger.warning("Title %s for job %s was already used or removed", job.title_id, job.id)
            campaign.generated_count += 1
            campaign.last_generated_at = now
            campaign.updated_at = now
            self.storage.update_job(job)
            self.storage.save_campaign(campaign)
        return job

    def fail(self, job_id: str, error: str, detail: Optional[str] = None) -> Job:
        with self.storage.locked():
            job = job_states.fail(self.storage.require_job(job_id), error, self.clock.now(), detail)
            self.storage.update_job(job)
        return job

    def retry_job(self, job_id: str, strict: bool = False) -> bool:
        """Send a failed job back to pending.

        Returns False when the retry limit is used up, or raises
        RetryExhaustedError if ``strict`` is set.
        """
        with self.storage.locked():
            job = self.storage.require_job(job_id)
            accepted = job_states.retry(job, self.clock.now())
            if accepted:
                self.storage.update_job(job)
        if not accepted and strict:
            raise RetryExhaustedError(job.id, job.max_retries)
        return accepted

    def cancel_all_pending(self) -> int:
        return len(self.storage.cancel_pending(self.clock.now()))

    def recover_stuck(self, stuck_after: timedelta) -> List[Job]:
        """Fail in_progress jobs that have been running longer than ``stuck_after``."""
        now = self.clock.now()
        recovered = []
        with self.storage.locked():
            for job in self.storage.get_jobs_by_status(JobStatus.IN_PROGRESS):
                started = job.executed_at or job.updated_at
                if now - started < stuck_after:
                    continue
                job_states.fail(job, f"Execution stuck for more than {stuck_after}", now)
                self.storage.update_job(job)
                recovered.append(job)
        for job in recovered:
            logger.warning("Recovered stuck job %s (%s)", job.id, job.title_text)
        return recovered

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        batch_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobPage:
        """Newest jobs first, one page at a time."""
        if page < 1 or limit < 1:
            raise InvalidRequestError("page and limit must be positive")
        found = self.storage.find_jobs(
            statuses=None if status is None else [status],
            batch_id=batch_id,
        )
        found.sort(key=lambda job: (job.created_at, job.batch_index), reverse=True)
        skip = (page - 1) * limit
        return JobPage(jobs=found[skip:skip + limit], page=page, limit=limit, total=len(found))

    def get_jobs_by_batch(self, batch_id: str) -> List[Job]:
        return self.storage.get_jobs_by_batch(batch_id)

    def claim_notification(self, batch_id: str, force: bool = False) -> Optional[List[Job]]:
        """Reserve a finished batch for one notification.

        Members are marked sent before the notifier runs, so a concurrent
        tick finds nothing left to report. Returns None when the batch is
        unfinished or already reported (or its last delivery failed) and
        ``force`` is not set.
        """
        now = self.clock.now()
        with self.storage.locked():
            members = self.storage.get_jobs_by_batch(batch_id)
            if not members or any(job_states.is_active(job) for job in members):
                return None
            if not force:
                if all(job.notification_sent for job in members):
                    return None
                if any(job.notification_error for job in members):
                    return None
            for job in members:
                job.notification_sent = True
                job.notification_sent_at = now
                job.notification_error = None
                self.storage.update_job(job)
        return members

    def mark_notified(self, batch_id: str, error: Optional[str] = None) -> List[Job]:
        """Record the outcome of a batch notification on every member.

        A failed delivery releases the claim taken by claim_notification().
        Job status is never touched here.
        """
        now = self.clock.now()
        updated = []
        with self.storage.locked():
            for job in self.storage.get_jobs_by_batch(batch_id):
                if error is None:
                    job.notification_sent = True
                    job.notification_sent_at = now
                    job.notification_error = None
                else:
                    job.notification_sent = False
                    job.notification_sent_at = None
                    job.notification_error = error
                self.storage.update_job(job)
                updated.append(job)
        return updated
