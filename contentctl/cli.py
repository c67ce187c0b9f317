"""CLI interface for contentctl."""

import sys
from datetime import datetime
from functools import wraps
from typing import Optional
import click
from pydantic import ValidationError
from .config import Settings, configure_logging
from .errors import ContentCtlError
from .models import ExecutionReport, Job, JobStatus
from .scheduler import Scheduler

# Global scheduler instance
_scheduler: Optional[Scheduler] = None

# CLI key -> (campaign field, converter)
CAMPAIGN_KEYS = {
    "daily-quota": ("daily_quota", int),
    "total-needed": ("total_needed", int),
    "start-date": ("start_date", str),
    "generation-time": ("generation_time_of_day", str),
    "utc-offset-minutes": ("utc_offset_minutes", int),
    "max-retries": ("default_max_retries", int),
    "notify-on-completion": ("notify_on_completion", click.BOOL),
}


def get_scheduler() -> Scheduler:
    """Get or create scheduler instance."""
    global _scheduler
    if _scheduler is None:
        try:
            settings = Settings()
        except ValidationError as e:
            raise ContentCtlError(f"Invalid settings: {e}") from e
        configure_logging(settings.log_level)
        _scheduler = Scheduler.from_settings(settings)
    return _scheduler


def handle_errors(func):
    """Turn contentctl errors into a one-line message and exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ContentCtlError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(1)
    return wrapper


def _fmt(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S") if moment else "-"


def _echo_report(report: ExecutionReport) -> None:
    if report.requested is not None:
        click.echo(f"Planned:    {report.planned}/{report.requested}" + (" (short)" if report.short else ""))
    if report.batch_id:
        click.echo(f"Batch:      {report.batch_id}")
    click.echo(f"Attempted:  {report.attempted}")
    click.echo(f"  Succeeded: {report.succeeded}")
    click.echo(f"  Failed:    {report.failed}")
    if report.skipped:
        click.echo(f"  Skipped:   {report.skipped}")


def _echo_jobs(jobs) -> None:
    click.echo(f"\n{'ID':<34} {'Status':<12} {'Retries':<8} {'Scheduled':<20} {'Title':<30}")
    click.echo("-" * 106)
    for job in jobs:
        retries = f"{job.retry_count}/{job.max_retries}"
        click.echo(
            f"{job.id:<34} {job.status.value:<12} {retries:<8} {_fmt(job.scheduled_for):<20} {job.title_text[:30]:<30}"
        )
    click.echo()


@click.group()
def cli():
    """ContentCTL - Content Generation Job Scheduler"""
    pass


@cli.command()
@handle_errors
def tick():
    """Plan today's due jobs and run everything that is due.

    Example:
        contentctl tick
    """
    report = get_scheduler().run_scheduled_tick()
    _echo_report(report)


@cli.command("generate-now")
@click.argument("count", type=int, default=1)
@handle_errors
def generate_now(count: int):
    """Generate COUNT items immediately.

    Example:
        contentctl generate-now 3
    """
    report = get_scheduler().generate_now(count)
    _echo_report(report)
    if report.short:
        click.echo(f"! Only {report.planned} unused title(s) were available")


@cli.command()
@click.argument("job_id")
@handle_errors
def retry(job_id: str):
    """Retry a failed job.

    Example:
        contentctl retry 3f2a...
    """
    if get_scheduler().retry_job(job_id):
        click.echo(f"✓ Job {job_id} scheduled for retry")
    else:
        click.echo(f"✗ Job {job_id} has reached its maximum retry attempts", err=True)
        sys.exit(1)


@cli.command("cancel-pending")
@handle_errors
def cancel_pending():
    """Cancel every job that has not started yet."""
    count = get_scheduler().cancel_all_pending()
    click.echo(f"✓ Cancelled {count} pending job(s)")


@cli.command()
@handle_errors
def recover():
    """Fail jobs stuck in progress so they can be retried."""
    recovered = get_scheduler().recover_stuck_jobs()
    click.echo(f"✓ Recovered {len(recovered)} stuck job(s)")


@cli.command()
@handle_errors
def status():
    """Show campaign progress.

    Example:
        contentctl status
    """
    snap = get_scheduler().get_progress()

    click.echo("\n" + "=" * 50)
    click.echo("ContentCTL Status")
    click.echo("=" * 50)
    click.echo(f"Active:          {'yes' if snap.is_active else 'no'}")
    click.echo(f"Generated:       {snap.generated}/{snap.total_needed} ({snap.percent}%)")
    click.echo(f"Remaining:       {snap.remaining}")
    click.echo(f"Per Day:         {snap.daily_quota}")
    click.echo(f"Days Remaining:  {snap.estimated_days_remaining}")
    click.echo(f"Unused Titles:   {snap.unused_titles}")
    click.echo(f"Pending Jobs:    {snap.pending_jobs}")
    click.echo(f"Completed Today: {snap.completed_today}")
    click.echo(f"Failed Today:    {snap.failed_today}")
    click.echo(f"Last Generated:  {_fmt(snap.last_generated_at)}")
    click.echo("=" * 50 + "\n")


@cli.command("list")
@click.option("--status", "status_", type=click.Choice([s.value for s in JobStatus]), help="Filter by status")
@click.option("--batch", "batch_id", help="Filter by batch id")
@click.option("--page", default=1, help="Page number")
@click.option("--limit", default=20, help="Jobs per page")
@handle_errors
def list_jobs(status_: Optional[str], batch_id: Optional[str], page: int, limit: int):
    """List jobs, newest first.

    Example:
        contentctl list --status failed
    """
    result = get_scheduler().list_jobs(
        status=JobStatus(status_) if status_ else None,
        batch_id=batch_id,
        page=page,
        limit=limit,
    )
    if not result.jobs:
        click.echo("No jobs found")
        return
    _echo_jobs(result.jobs)
    click.echo(f"Page {result.page}/{result.pages} ({result.total} jobs)")


@cli.command()
@click.argument("job_id")
@handle_errors
def show(job_id: str):
    """Show one job in full."""
    job: Job = get_scheduler().get_job(job_id)
    click.echo(job.model_dump_json(indent=2))


@cli.group()
def batch():
    """Inspect and notify batches"""
    pass


@batch.command("show")
@click.argument("batch_id")
@handle_errors
def batch_show(batch_id: str):
    """List the jobs of a batch."""
    scheduler = get_scheduler()
    members = scheduler.get_jobs_by_batch(batch_id)
    if not members:
        click.echo(f"✗ Batch {batch_id} not found", err=True)
        sys.exit(1)
    _echo_jobs(members)
    state = "complete" if scheduler.is_batch_complete(batch_id) else "in progress"
    click.echo(f"Batch {batch_id} is {state}")


@batch.command("notify")
@click.argument("batch_id")
@handle_errors
def batch_notify(batch_id: str):
    """Send (or re-send) the notification for a finished batch."""
    if get_scheduler().notify_batch(batch_id):
        click.echo(f"✓ Batch {batch_id} notified")
    else:
        click.echo(f"✗ Notification for batch {batch_id} failed", err=True)
        sys.exit(1)


@cli.group()
def titles():
    """Manage the title pool"""
    pass


@titles.command("add")
@click.argument("title", nargs=-1, required=True)
@handle_errors
def titles_add(title):
    """Add one or more titles.

    Example:
        contentctl titles add "First title" "Second title"
    """
    added = get_scheduler().add_titles(list(title))
    click.echo(f"✓ Added {len(added)} title(s)")


@titles.command("list")
@click.option("--status", "status_", type=click.Choice(["all", "used", "unused"]), default="all")
@handle_errors
def titles_list(status_: str):
    """List titles in the pool."""
    entries = get_scheduler().list_titles(status_)
    if not entries:
        click.echo("No titles found")
        return
    click.echo(f"\n{'ID':<34} {'Used':<6} {'Title':<50}")
    click.echo("-" * 90)
    for entry in entries:
        click.echo(f"{entry.id:<34} {'yes' if entry.used else 'no':<6} {entry.title[:50]:<50}")
    click.echo()


@titles.command("remove")
@click.argument("title_id")
@handle_errors
def titles_remove(title_id: str):
    """Remove an unused title."""
    removed = get_scheduler().remove_title(title_id)
    click.echo(f"✓ Removed title: {removed.title}")


@cli.group()
def campaign():
    """Manage the campaign"""
    pass


@campaign.command("show")
@handle_errors
def campaign_show():
    """Show campaign settings."""
    cfg = get_scheduler().get_campaign()

    click.echo("\nCampaign:")
    click.echo(f"  active:               {cfg.is_active}")
    click.echo(f"  daily-quota:          {cfg.daily_quota}")
    click.echo(f"  total-needed:         {cfg.total_needed}")
    click.echo(f"  generated:            {cfg.generated_count}")
    click.echo(f"  start-date:           {cfg.start_date}")
    click.echo(f"  generation-time:      {cfg.generation_time_of_day}")
    click.echo(f"  utc-offset-minutes:   {cfg.utc_offset_minutes}")
    click.echo(f"  max-retries:          {cfg.default_max_retries}")
    click.echo(f"  notify-on-completion: {cfg.notify_on_completion}")
    click.echo()


@campaign.command("set")
@click.argument("key", type=click.Choice(sorted(CAMPAIGN_KEYS)))
@click.argument("value")
@handle_errors
def campaign_set(key: str, value: str):
    """Set a campaign value.

    Example:
        contentctl campaign set daily-quota 2
        contentctl campaign set generation-time 09:30
    """
    field, convert = CAMPAIGN_KEYS[key]
    try:
        converted = convert(value)
    except (ValueError, click.BadParameter) as e:
        click.echo(f"✗ Invalid value: {e}", err=True)
        sys.exit(1)
    get_scheduler().update_campaign(**{field: converted})
    click.echo(f"✓ Campaign updated: {key} = {value}")


@campaign.command("activate")
@handle_errors
def campaign_activate():
    """Start scheduling jobs."""
    get_scheduler().set_active(True)
    click.echo("✓ Campaign activated")


@campaign.command("deactivate")
@handle_errors
def campaign_deactivate():
    """Stop scheduling new jobs."""
    get_scheduler().set_active(False)
    click.echo("✓ Campaign deactivated")


@cli.command()
@click.option("--titles", "reset_titles", is_flag=True, help="Also mark every title unused")
@handle_errors
def reset(reset_titles: bool):
    """Reset the generated count and cancel pending jobs."""
    cancelled = get_scheduler().reset_progress(reset_titles=reset_titles)
    click.echo(f"✓ Progress reset ({cancelled} pending job(s) cancelled)")


@cli.group()
def worker():
    """Run the scheduler loop"""
    pass


@worker.command()
@click.option("--interval", type=float, default=None, help="Seconds between ticks")
@handle_errors
def start(interval: Optional[float]):
    """Run a tick every INTERVAL seconds until interrupted.

    Example:
        contentctl worker start --interval 60
    """
    scheduler = get_scheduler()
    loop = scheduler.require_worker()
    click.echo("Starting scheduler loop...")
    loop.run(scheduler.run_scheduled_tick, interval or scheduler.settings.poll_interval)
    click.echo("Scheduler stopped")


if __name__ == "__main__":
    cli()
