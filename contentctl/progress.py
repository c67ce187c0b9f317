"""Aggregate campaign progress."""

from datetime import datetime
from .models import CampaignConfig, JobStatus, ProgressSnapshot
from .planner import campaign_day, day_bounds
from .storage import JobRepository


def progress(campaign: CampaignConfig, storage: JobRepository, now: datetime) -> ProgressSnapshot:
    """Build a snapshot from the campaign record and current job counts."""
    start_of_day, _ = day_bounds(campaign, campaign_day(campaign, now))
    pending = completed_today = failed_today = 0
    for job in storage.get_all_jobs():
        if job.status == JobStatus.PENDING:
            pending += 1
        elif job.completed_at is None or job.completed_at < start_of_day:
            continue
        elif job.status == JobStatus.COMPLETED:
            completed_today += 1
        elif job.status == JobStatus.FAILED:
            failed_today += 1

    return ProgressSnapshot(
        total_needed=campaign.total_needed,
        generated=campaign.generated_count,
        remaining=campaign.remaining,
        percent=campaign.progress_percentage,
        estimated_days_remaining=campaign.estimated_days_remaining,
        daily_quota=campaign.daily_quota,
        pending_jobs=pending,
        completed_today=completed_today,
        failed_today=failed_today,
        unused_titles=campaign.unused_titles_count,
        is_active=campaign.is_active,
        last_generated_at=campaign.last_generated_at,
    )
