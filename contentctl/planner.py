"""Pacing planner: turns the campaign cadence into due jobs."""

import logging
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple
from .errors import CampaignConfigError, InvalidRequestError
from .models import CampaignConfig, PlannedJob
from .titles import TitlePool

logger = logging.getLogger(__name__)

MIN_SPACING = timedelta(minutes=5)
MAX_UTC_OFFSET_MINUTES = 14 * 60

_TIME_OF_DAY = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_time_of_day(value: str) -> time:
    match = _TIME_OF_DAY.match(value or "")
    if not match:
        raise CampaignConfigError(f"generation_time_of_day must be HH:MM, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def validate_campaign(config: CampaignConfig) -> None:
    """Reject a campaign the planner cannot work with."""
    if config.daily_quota < 1:
        raise CampaignConfigError(f"daily_quota must be at least 1, got {config.daily_quota}")
    if config.total_needed < 0:
        raise CampaignConfigError(f"total_needed cannot be negative, got {config.total_needed}")
    if config.generated_count < 0:
        raise CampaignConfigError(f"generated_count cannot be negative, got {config.generated_count}")
    if config.default_max_retries < 0:
        raise CampaignConfigError(
            f"default_max_retries cannot be negative, got {config.default_max_retries}"
        )
    if abs(config.utc_offset_minutes) > MAX_UTC_OFFSET_MINUTES:
        raise CampaignConfigError(f"utc_offset_minutes out of range: {config.utc_offset_minutes}")
    parse_time_of_day(config.generation_time_of_day)


def campaign_day(config: CampaignConfig, now: datetime) -> date:
    """The calendar day ``now`` falls on in the campaign's fixed offset."""
    return now.astimezone(config.tz).date()


def day_bounds(config: CampaignConfig, day: date) -> Tuple[datetime, datetime]:
    """Start of ``day`` and start of the following day, in UTC."""
    start = datetime.combine(day, time.min, tzinfo=config.tz)
    return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)


def occurrence(config: CampaignConfig, day: date) -> datetime:
    """The instant the given day's quota becomes due."""
    at = datetime.combine(day, parse_time_of_day(config.generation_time_of_day), tzinfo=config.tz)
    return at.astimezone(timezone.utc)


def new_batch_id(day: Optional[date] = None) -> str:
    suffix = uuid.uuid4().hex[:8]
    if day is None:
        return f"manual-{suffix}"
    return f"batch-{day.isoformat()}-{suffix}"


def slots_due(config: CampaignConfig, now: datetime, scheduled_today: int = 0, outstanding: int = 0) -> int:
    """How many jobs the cadence owes right now.

    ``scheduled_today`` counts jobs already created for the current campaign
    day, whatever their status. ``outstanding`` counts jobs that are pending
    or running and so will consume part of the remaining need.
    """
    validate_campaign(config)
    if not config.is_active:
        return 0
    today = campaign_day(config, now)
    if today < config.start_date or now < occurrence(config, today):
        return 0
    owed_today = max(0, config.daily_quota - scheduled_today)
    headroom = max(0, config.total_needed - config.generated_count - outstanding)
    return min(owed_today, headroom)


def spread(config: CampaignConfig, now: datetime, count: int) -> List[datetime]:
    """Evenly space ``count`` timestamps from ``now`` to the end of the day."""
    _, end_of_day = day_bounds(config, campaign_day(config, now))
    latest = max(end_of_day - MIN_SPACING, now)
    interval = max(MIN_SPACING, (end_of_day - now) / count)
    return [min(now + interval * i, latest) for i in range(count)]


def compute_due_jobs(
    config: CampaignConfig,
    now: datetime,
    requested_count: Optional[int] = None,
    scheduled_today: int = 0,
    outstanding: int = 0,
    reserved_title_ids: Iterable[str] = (),
) -> List[PlannedJob]:
    """Plan the jobs that should exist as of ``now``.

    With ``requested_count`` the cadence is ignored and exactly that many
    jobs are stamped ``now``. Titles in ``reserved_title_ids`` are held by
    other jobs and are skipped. Running out of titles ends the plan early;
    callers compare the result length against what they asked for.
    """
    if requested_count is not None:
        if requested_count < 1:
            raise InvalidRequestError(f"Count must be at least 1, got {requested_count}")
        count = requested_count
        batch_id = new_batch_id()
        timestamps = [now] * count
    else:
        count = slots_due(config, now, scheduled_today, outstanding)
        if count == 0:
            return []
        batch_id = new_batch_id(campaign_day(config, now))
        timestamps = spread(config, now, count)

    pool = TitlePool(config)
    taken = set(reserved_title_ids)
    planned: List[PlannedJob] = []
    for index, scheduled_for in enumerate(timestamps):
        entry = pool.next_unused(exclude=taken)
        if entry is None:
            logger.info("Title pool exhausted after %d of %d jobs", index, count)
            break
        taken.add(entry.id)
        planned.append(
            PlannedJob(
                title_id=entry.id,
                title_text=entry.title,
                scheduled_for=scheduled_for,
                batch_id=batch_id,
                batch_index=index,
            )
        )
    return planned
