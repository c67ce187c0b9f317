"""Data models for campaigns, titles, jobs and reports."""

import math
import uuid
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# A batch is complete once none of its jobs is in one of these.
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.IN_PROGRESS})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class TitleEntry(BaseModel):
    """A candidate title waiting in the campaign's pool."""
    id: str = Field(default_factory=new_id)
    title: str
    used: bool = False
    used_at: Optional[datetime] = None
    produced_artifact_id: Optional[str] = None


class CampaignConfig(BaseModel):
    """The single campaign record driving what gets generated and when.

    ``generated_count <= total_needed`` is advisory only: administrators may
    raise ``total_needed`` mid-campaign.
    """
    title_pool: List[TitleEntry] = Field(default_factory=list)
    daily_quota: int = 1
    start_date: date = Field(default_factory=lambda: utcnow().date())
    generation_time_of_day: str = "09:00"  # HH:MM in the campaign's offset
    utc_offset_minutes: int = 0
    total_needed: int = 10
    generated_count: int = 0
    is_active: bool = False
    last_generated_at: Optional[datetime] = None
    notify_on_completion: bool = True
    default_max_retries: int = 3
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def tz(self) -> timezone:
        return timezone(timedelta(minutes=self.utc_offset_minutes))

    @property
    def remaining(self) -> int:
        return max(0, self.total_needed - self.generated_count)

    @property
    def unused_titles_count(self) -> int:
        return sum(1 for entry in self.title_pool if not entry.used)

    @property
    def estimated_days_remaining(self) -> int:
        if self.daily_quota <= 0:
            return 0
        return math.ceil(self.remaining / self.daily_quota)

    @property
    def progress_percentage(self) -> int:
        if self.total_needed <= 0:
            return 100
        return round(self.generated_count / self.total_needed * 100)


class Artifact(BaseModel):
    """What the content generator hands back for one title."""
    id: str = Field(default_factory=new_id)
    title: str
    excerpt: str = ""
    content_length: int = 0
    image_urls: List[str] = Field(default_factory=list)


class PlannedJob(BaseModel):
    """A job the planner wants created; not yet persisted."""
    title_id: str
    title_text: str
    scheduled_for: datetime
    batch_id: str
    batch_index: int


class Job(BaseModel):
    """One content-generation job."""
    id: str = Field(default_factory=new_id)
    title_id: Optional[str] = None
    title_text: str
    scheduled_for: datetime
    status: JobStatus = JobStatus.PENDING
    batch_id: str
    batch_index: int = 0
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    executed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None
    produced_artifact_id: Optional[str] = None
    generated_content: Optional[Artifact] = None
    error: Optional[str] = None
    error_detail: Optional[str] = None
    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None
    notification_error: Optional[str] = None


class ExecutionReport(BaseModel):
    """Outcome of one planning + execution pass."""
    requested: Optional[int] = None
    planned: int = 0
    batch_id: Optional[str] = None
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0  # claims lost to another worker
    job_ids: List[str] = Field(default_factory=list)

    @property
    def short(self) -> bool:
        """True when fewer jobs were planned than requested."""
        return self.requested is not None and self.planned < self.requested

    def merge(self, other: "ExecutionReport") -> None:
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.job_ids.extend(other.job_ids)


class ProgressSnapshot(BaseModel):
    total_needed: int
    generated: int
    remaining: int
    percent: int
    estimated_days_remaining: int
    daily_quota: int
    pending_jobs: int
    completed_today: int
    failed_today: int
    unused_titles: int
    is_active: bool
    last_generated_at: Optional[datetime] = None


class BatchSummary(BaseModel):
    """What a notifier receives once a batch has finished."""
    batch_id: str
    total: int
    succeeded: int
    failed: int
    cancelled: int = 0
    succeeded_titles: List[str] = Field(default_factory=list)
    failed_titles: List[str] = Field(default_factory=list)


class JobPage(BaseModel):
    jobs: List[Job]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)
