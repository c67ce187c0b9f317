"""Runtime settings and logging setup."""

import logging
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Process settings, read from ``CONTENTCTL_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="CONTENTCTL_")

    data_dir: str = ".contentctl"
    tick_limit: int = 5
    concurrency: int = 1
    generation_timeout: float = 300.0  # seconds per generate call
    stuck_after: float = 900.0  # seconds before an in_progress job counts as stuck
    poll_interval: float = 60.0
    max_generate_now: int = 10
    generator_command: Optional[str] = None
    notifier_command: Optional[str] = None
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_stuck_window(self) -> "Settings":
        # A job still inside its generate call must never look stuck.
        if self.stuck_after <= self.generation_timeout:
            raise ValueError("stuck_after must be longer than generation_timeout")
        return self


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())
