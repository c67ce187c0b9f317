"""The campaign's pool of candidate titles."""

from datetime import datetime
from typing import Iterable, List, Optional
from .errors import InvalidRequestError, TitleInUseError, TitleNotFoundError
from .models import CampaignConfig, TitleEntry


class TitlePool:
    """View over ``CampaignConfig.title_pool``.

    Insertion order is consumption order: the oldest unused entry is always
    handed out first. Mutations change the campaign in place; persisting it
    is the caller's job.
    """

    def __init__(self, campaign: CampaignConfig):
        self.campaign = campaign

    @property
    def entries(self) -> List[TitleEntry]:
        return self.campaign.title_pool

    def next_unused(self, exclude: Iterable[str] = ()) -> Optional[TitleEntry]:
        """Return the oldest unused entry whose id is not in ``exclude``."""
        skip = set(exclude)
        for entry in self.entries:
            if not entry.used and entry.id not in skip:
                return entry
        return None

    def unused(self) -> List[TitleEntry]:
        return [entry for entry in self.entries if not entry.used]

    def used(self) -> List[TitleEntry]:
        return [entry for entry in self.entries if entry.used]

    def get(self, title_id: str) -> TitleEntry:
        for entry in self.entries:
            if entry.id == title_id:
                return entry
        raise TitleNotFoundError(title_id)

    def mark_used(self, title_id: str, artifact_id: Optional[str], now: datetime) -> bool:
        """Record that ``title_id`` produced ``artifact_id``.

        Returns False without touching anything when the entry is already
        used or no longer exists.
        """
        try:
            entry = self.get(title_id)
        except TitleNotFoundError:
            return False
        if entry.used:
            return False
        entry.used = True
        entry.used_at = now
        entry.produced_artifact_id = artifact_id
        return True

    def add(self, titles: Iterable[str]) -> List[TitleEntry]:
        cleaned = [t.strip() for t in titles]
        if not cleaned or any(not t for t in cleaned):
            raise InvalidRequestError("Titles must be non-empty strings")
        added = [TitleEntry(title=t) for t in cleaned]
        self.entries.extend(added)
        return added

    def remove(self, title_id: str) -> TitleEntry:
        entry = self.get(title_id)
        if entry.used:
            raise TitleInUseError(f"Title {title_id} has already been used")
        self.entries.remove(entry)
        return entry

    def reset(self) -> None:
        """Put every entry back into the unused state."""
        for entry in self.entries:
            entry.used = False
            entry.used_at = None
            entry.produced_artifact_id = None
