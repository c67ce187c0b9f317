"""Batch completion tracking."""

from collections import OrderedDict
from typing import Dict, List
from .models import ACTIVE_STATUSES, Job
from .storage import JobRepository


class BatchTracker:
    """Read-only view of jobs grouped by ``batch_id``."""

    def __init__(self, storage: JobRepository):
        self.storage = storage

    def is_batch_complete(self, batch_id: str) -> bool:
        """True when no member job is pending or in progress."""
        return not any(job.status in ACTIVE_STATUSES for job in self.storage.get_jobs_by_batch(batch_id))

    def batches_awaiting_notification(self) -> List[str]:
        """Complete batches that have not been reported yet.

        A batch whose last notification failed is left for an explicit
        re-notify rather than retried on every tick.
        """
        groups: Dict[str, List[Job]] = OrderedDict()
        for job in self.storage.get_all_jobs():
            groups.setdefault(job.batch_id, []).append(job)

        waiting = []
        for batch_id, members in groups.items():
            if any(job.status in ACTIVE_STATUSES for job in members):
                continue
            if all(job.notification_sent for job in members):
                continue
            if any(job.notification_error for job in members):
                continue
            waiting.append(batch_id)
        return waiting
