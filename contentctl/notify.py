"""Batch notifications."""

import logging
import subprocess
from typing import List, Optional, Protocol
from .errors import NotificationError
from .models import BatchSummary, CampaignConfig, Job, JobStatus
from .queue import JobQueue

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, summary: BatchSummary) -> None:
        """Deliver ``summary`` or raise."""
        ...


class LogNotifier:
    """Writes batch summaries to the log."""

    def notify(self, summary: BatchSummary) -> None:
        logger.info(
            "Batch %s finished: %d generated, %d failed, %d cancelled",
            summary.batch_id,
            summary.succeeded,
            summary.failed,
            summary.cancelled,
        )
        for title in summary.succeeded_titles:
            logger.info("  + %s", title)
        for title in summary.failed_titles:
            logger.info("  - %s", title)


class CommandNotifier:
    """Pipes the summary as JSON into a shell command."""

    def __init__(self, command: str, timeout: float = 60.0):
        self.command = command
        self.timeout = timeout

    def notify(self, summary: BatchSummary) -> None:
        try:
            result = subprocess.run(
                self.command,
                shell=True,
                input=summary.model_dump_json(),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise NotificationError(f"Notifier timed out after {self.timeout}s") from e
        if result.returncode != 0:
            raise NotificationError(result.stderr.strip() or f"Exit code: {result.returncode}")


def summarize(batch_id: str, jobs: List[Job]) -> BatchSummary:
    succeeded = [job for job in jobs if job.status == JobStatus.COMPLETED]
    failed = [job for job in jobs if job.status == JobStatus.FAILED]
    return BatchSummary(
        batch_id=batch_id,
        total=len(jobs),
        succeeded=len(succeeded),
        failed=len(failed),
        cancelled=sum(1 for job in jobs if job.status == JobStatus.CANCELLED),
        succeeded_titles=[
            job.generated_content.title if job.generated_content else job.title_text for job in succeeded
        ],
        failed_titles=[job.title_text for job in failed],
    )


class NotificationTrigger:
    """Reports a finished batch and records the outcome on its jobs."""

    def __init__(self, queue: JobQueue, notifier: Optional[Notifier] = None):
        self.queue = queue
        self.notifier = notifier or LogNotifier()

    def on_batch_complete(self, batch_id: str, campaign: CampaignConfig, force: bool = False) -> bool:
        """Notify about ``batch_id``. Returns whether delivery happened here.

        The batch is claimed first, so only one caller ever delivers it.
        A failed delivery is stored as ``notification_error`` on each job;
        job status is left exactly as it was.
        """
        jobs = self.queue.claim_notification(batch_id, force=force)
        if jobs is None:
            logger.debug("Batch %s already claimed for notification", batch_id)
            return False
        if not campaign.notify_on_completion:
            return True

        summary = summarize(batch_id, jobs)
        try:
            self.notifier.notify(summary)
        except Exception as e:
            logger.warning("Notification for batch %s failed: %s", batch_id, e)
            self.queue.mark_notified(batch_id, error=str(e) or type(e).__name__)
            return False

        self.queue.mark_notified(batch_id)
        logger.info("Batch %s notified (%d/%d generated)", batch_id, summary.succeeded, summary.total)
        return True
