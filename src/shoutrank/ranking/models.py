"""Request and response payloads of the ranking service."""

from __future__ import annotations

from dataclasses import dataclass

from ..ranks import RankTier, classify
from ..storage.base import RankingEntry


@dataclass(slots=True)
class RankingSubmission:
    """A measured score offered to the leaderboard."""

    display_name: str
    decibel: float | str
    is_audio_public: bool = False
    audio: bytes | None = None
    audio_mimetype: str | None = None
    owner_id: str | None = None


@dataclass(frozen=True, slots=True)
class SubmissionReceipt:
    """Where a freshly submitted score landed."""

    id: int
    rank: int
    season_number: int
    decibel: float

    @property
    def tier(self) -> RankTier:
        return classify(self.decibel)


@dataclass(frozen=True, slots=True)
class LeaderboardRow:
    """A ranked entry as seen by a particular viewer."""

    rank: int
    entry: RankingEntry
    is_own_entry: bool = False

    @property
    def tier(self) -> RankTier:
        return classify(self.entry.decibel)
