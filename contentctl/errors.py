"""Exceptions raised by contentctl."""


class ContentCtlError(Exception):
    """Base class for all contentctl errors."""


class CampaignConfigError(ContentCtlError):
    """Campaign configuration cannot be used for planning."""


class InvalidRequestError(ContentCtlError):
    """Caller supplied an out-of-range or malformed argument."""


class JobNotFoundError(ContentCtlError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(ContentCtlError):
    """A job state-machine guard rejected a transition."""

    def __init__(self, job_id: str, current: str, event: str):
        super().__init__(f"Cannot {event} job {job_id} while {current}")
        self.job_id = job_id
        self.current = current
        self.event = event


class RetryExhaustedError(ContentCtlError):
    def __init__(self, job_id: str, max_retries: int):
        super().__init__(f"Job {job_id} reached its retry limit ({max_retries})")
        self.job_id = job_id
        self.max_retries = max_retries


class TitleNotFoundError(ContentCtlError):
    def __init__(self, title_id: str):
        super().__init__(f"Title {title_id} not found")
        self.title_id = title_id


class TitleInUseError(ContentCtlError):
    """Raised when removing a title that has already produced content."""


class GenerationError(ContentCtlError):
    """The content generator reported a failure."""


class GenerationTimeoutError(GenerationError):
    """The content generator did not answer within its timeout."""


class NotificationError(ContentCtlError):
    """The notifier could not deliver a batch summary."""
