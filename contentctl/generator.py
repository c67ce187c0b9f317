"""Content generator adapters."""

import json
import os
import subprocess
from typing import Optional, Protocol
from pydantic import ValidationError
from .errors import GenerationError, GenerationTimeoutError
from .models import Artifact, CampaignConfig


class ContentGenerator(Protocol):
    def generate(self, title_text: str, campaign: CampaignConfig, timeout: Optional[float] = None) -> Artifact:
        """Produce content for ``title_text`` or raise."""
        ...


class CommandGenerator:
    """Generate content by running a shell command.

    The title is passed in ``CONTENTCTL_TITLE`` and the campaign as JSON on
    stdin. The command must print an Artifact as JSON on stdout.
    """

    def __init__(self, command: str):
        self.command = command

    def generate(self, title_text: str, campaign: CampaignConfig, timeout: Optional[float] = None) -> Artifact:
        env = dict(os.environ, CONTENTCTL_TITLE=title_text)
        try:
            result = subprocess.run(
                self.command,
                shell=True,
                input=campaign.model_dump_json(exclude={"title_pool"}),
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise GenerationTimeoutError(f"Generator timed out after {timeout}s") from e

        if result.returncode != 0:
            raise GenerationError(result.stderr.strip() or f"Exit code: {result.returncode}")
        try:
            return Artifact(**json.loads(result.stdout))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise GenerationError(f"Generator printed an invalid artifact: {e}") from e
