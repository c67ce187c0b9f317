"""Scheduler service: the operations the admin surface calls."""

import logging
import threading
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple
from pydantic import ValidationError
from .batches import BatchTracker
from .clock import SystemClock
from .config import Settings
from .errors import GenerationError, InvalidRequestError
from .generator import CommandGenerator, ContentGenerator
from .models import CampaignConfig, ExecutionReport, Job, JobPage, JobStatus, ProgressSnapshot, TitleEntry
from .notify import CommandNotifier, LogNotifier, NotificationTrigger, Notifier
from .planner import compute_due_jobs, slots_due, validate_campaign
from .progress import progress
from .queue import JobQueue
from .storage import JobRepository, Storage
from .titles import TitlePool
from .worker import Worker

logger = logging.getLogger(__name__)

# Fields an administrator may change through update_campaign().
EDITABLE_FIELDS = frozenset({
    "daily_quota",
    "start_date",
    "generation_time_of_day",
    "utc_offset_minutes",
    "total_needed",
    "is_active",
    "notify_on_completion",
    "default_max_retries",
})


class Scheduler:
    """Plans, executes and reports on content-generation jobs."""

    def __init__(
        self,
        storage: JobRepository,
        generator: Optional[ContentGenerator] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        clock=None,
    ):
        self.settings = settings or Settings()
        self.clock = clock or SystemClock()
        self.storage = storage
        self.queue = JobQueue(storage, self.clock)
        self.batches = BatchTracker(storage)
        self.trigger = NotificationTrigger(self.queue, notifier)
        self.worker = None
        if generator is not None:
            self.worker = Worker(
                self.queue,
                generator,
                timeout=self.settings.generation_timeout,
                concurrency=self.settings.concurrency,
            )
        self._planning_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Scheduler":
        generator = CommandGenerator(settings.generator_command) if settings.generator_command else None
        notifier = CommandNotifier(settings.notifier_command) if settings.notifier_command else LogNotifier()
        return cls(Storage(settings.data_dir), generator, notifier, settings)

    def require_worker(self) -> Worker:
        if self.worker is None:
            raise GenerationError("No content generator configured (set CONTENTCTL_GENERATOR_COMMAND)")
        return self.worker

    # Planning and execution

    def _plan(self, requested_count: Optional[int] = None) -> Tuple[int, List[Job]]:
        """Plan and persist jobs. Only one planning pass runs at a time.

        The campaign is re-read under the store lock, so the title pool and
        generated count agree with the reserved and outstanding jobs.
        """
        with self._planning_lock, self.storage.locked():
            campaign = self.storage.get_campaign()
            validate_campaign(campaign)
            now = self.clock.now()
            scheduled_today = outstanding = 0
            if requested_count is None:
                scheduled_today = self.queue.scheduled_today_count(campaign)
                outstanding = self.queue.outstanding_count()
                wanted = slots_due(campaign, now, scheduled_today, outstanding)
            else:
                wanted = requested_count
            planned = compute_due_jobs(
                campaign,
                now,
                requested_count,
                scheduled_today=scheduled_today,
                outstanding=outstanding,
                reserved_title_ids=self.queue.reserved_title_ids(),
            )
            created = self.queue.enqueue(planned, max_retries=campaign.default_max_retries)

        if created:
            logger.info("Planned %d job(s) in batch %s", len(created), created[0].batch_id)
        if len(created) < wanted:
            logger.warning("Only %d of %d job(s) planned: not enough unused titles", len(created), wanted)
        return wanted, created

    def run_scheduled_tick(self) -> ExecutionReport:
        """Plan whatever today's cadence still owes, then run due jobs.

        Safe to call repeatedly: jobs already scheduled for the day count
        against its quota.
        """
        worker = self.require_worker()
        validate_campaign(self.storage.get_campaign())
        self.recover_stuck_jobs()
        campaign = self.storage.get_campaign()

        report = ExecutionReport()
        if campaign.is_active and campaign.generated_count >= campaign.total_needed:
            logger.info("Campaign target of %d reached, deactivating", campaign.total_needed)
            campaign = self.set_active(False)
        elif campaign.is_active:
            wanted, created = self._plan()
            report.requested = wanted
            report.planned = len(created)
            report.batch_id = created[0].batch_id if created else None

        report.merge(worker.run_due_jobs(campaign, self.settings.tick_limit))
        self.check_batch_completion(campaign)
        return report

    def generate_now(self, count: int) -> ExecutionReport:
        """Plan ``count`` jobs stamped now and run exactly those.

        A pool with fewer unused titles yields a short report, not an error.
        """
        if count < 1 or count > self.settings.max_generate_now:
            raise InvalidRequestError(f"Count must be between 1 and {self.settings.max_generate_now}")
        worker = self.require_worker()
        campaign = self.storage.get_campaign()
        validate_campaign(campaign)

        _, created = self._plan(count)
        report = ExecutionReport(
            requested=count,
            planned=len(created),
            batch_id=created[0].batch_id if created else None,
        )
        report.merge(worker.execute(campaign, [job.id for job in created]))
        self.check_batch_completion(campaign)
        return report

    def check_batch_completion(self, campaign: Optional[CampaignConfig] = None) -> List[str]:
        """Notify every finished batch not yet reported. Returns their ids."""
        campaign = campaign or self.storage.get_campaign()
        notified = []
        for batch_id in self.batches.batches_awaiting_notification():
            if self.trigger.on_batch_complete(batch_id, campaign):
                notified.append(batch_id)
        return notified

    def notify_batch(self, batch_id: str) -> bool:
        """Re-send the notification for a finished batch."""
        if not self.queue.get_jobs_by_batch(batch_id):
            raise InvalidRequestError(f"Batch {batch_id} not found")
        if not self.batches.is_batch_complete(batch_id):
            raise InvalidRequestError(f"Batch {batch_id} still has pending or running jobs")
        return self.trigger.on_batch_complete(batch_id, self.storage.get_campaign(), force=True)

    def retry_job(self, job_id: str) -> bool:
        accepted = self.queue.retry_job(job_id)
        if accepted:
            logger.info("Job %s queued for retry", job_id)
        else:
            logger.warning("Job %s has no retries left", job_id)
        return accepted

    def cancel_all_pending(self) -> int:
        count = self.queue.cancel_all_pending()
        logger.info("Cancelled %d pending job(s)", count)
        return count

    def recover_stuck_jobs(self) -> List[Job]:
        return self.queue.recover_stuck(timedelta(seconds=self.settings.stuck_after))

    # Reporting

    def get_progress(self) -> ProgressSnapshot:
        return progress(self.storage.get_campaign(), self.storage, self.clock.now())

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        batch_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobPage:
        return self.queue.list_jobs(status=status, batch_id=batch_id, page=page, limit=limit)

    def get_job(self, job_id: str) -> Job:
        return self.storage.require_job(job_id)

    def get_jobs_by_batch(self, batch_id: str) -> List[Job]:
        return self.queue.get_jobs_by_batch(batch_id)

    def is_batch_complete(self, batch_id: str) -> bool:
        return self.batches.is_batch_complete(batch_id)

    # Campaign administration

    def get_campaign(self) -> CampaignConfig:
        return self.storage.get_campaign()

    def update_campaign(self, **changes: Any) -> CampaignConfig:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidRequestError(f"Unknown campaign setting(s): {', '.join(sorted(unknown))}")
        with self.storage.locked():
            current = self.storage.get_campaign()
            data: Dict[str, Any] = current.model_dump()
            data.update(changes)
            data["updated_at"] = self.clock.now()
            try:
                updated = CampaignConfig(**data)
            except ValidationError as e:
                raise InvalidRequestError(str(e)) from e
            validate_campaign(updated)
            self.storage.save_campaign(updated)
        return updated

    def set_active(self, active: bool) -> CampaignConfig:
        return self.update_campaign(is_active=active)

    def reset_progress(self, reset_titles: bool = False) -> int:
        """Zero the generated count and cancel pending jobs.

        Returns the number of jobs cancelled.
        """
        with self.storage.locked():
            campaign = self.storage.get_campaign()
            campaign.generated_count = 0
            campaign.last_generated_at = None
            campaign.updated_at = self.clock.now()
            if reset_titles:
                TitlePool(campaign).reset()
            self.storage.save_campaign(campaign)
            return self.queue.cancel_all_pending()

    def add_titles(self, titles: List[str]) -> List[TitleEntry]:
        with self.storage.locked():
            campaign = self.storage.get_campaign()
            added = TitlePool(campaign).add(titles)
            self.storage.save_campaign(campaign)
        return added

    def remove_title(self, title_id: str) -> TitleEntry:
        with self.storage.locked():
            campaign = self.storage.get_campaign()
            removed = TitlePool(campaign).remove(title_id)
            self.storage.save_campaign(campaign)
        return removed

    def list_titles(self, status: str = "all") -> List[TitleEntry]:
        pool = TitlePool(self.storage.get_campaign())
        if status == "used":
            return pool.used()
        if status == "unused":
            return pool.unused()
        if status == "all":
            return list(pool.entries)
        raise InvalidRequestError(f"Unknown title status: {status}")
