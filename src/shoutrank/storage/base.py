"""Storage contract shared by the relational and flat-file backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any


class StorageUnavailableError(RuntimeError):
    """Raised when the backing store cannot be reached; callers may retry."""


def ensure_utc(value: Any) -> datetime:
    """Coerce naive datetimes and ISO strings into UTC-aware datetimes.

    SQLite hands back naive values even for ``timezone=True`` columns.
    """

    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise TypeError(f"Unsupported datetime value: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class Season:
    """A competition window."""

    season_number: int
    started_at: datetime
    next_reset_at: datetime

    @classmethod
    def opening(cls, season_number: int, now: datetime, length: timedelta) -> "Season":
        return cls(season_number=season_number, started_at=now, next_reset_at=now + length)

    def is_overdue(self, now: datetime) -> bool:
        return now > self.next_reset_at


@dataclass(frozen=True, slots=True)
class RankingEntry:
    """A row on the live leaderboard."""

    id: int
    display_name: str
    decibel: float
    created_at: datetime
    season_number: int
    owner_id: str | None = None
    audio_key: str | None = None
    audio_mimetype: str | None = None

    @property
    def has_audio(self) -> bool:
        return self.audio_key is not None

    def outranks(self, other: "RankingEntry") -> bool:
        """Return whether this entry sorts before ``other`` on the board."""

        if self.decibel != other.decibel:
            return self.decibel > other.decibel
        return self.id < other.id


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """A personal record kept across seasons."""

    id: int
    owner_id: str
    display_name: str
    decibel: float
    created_at: datetime
    season_number: int
    ranking_entry_id: int | None = None
    audio_key: str | None = None
    audio_mimetype: str | None = None

    @property
    def has_audio(self) -> bool:
        return self.audio_key is not None


@dataclass(slots=True)
class RankingEntryCreate:
    """Payload for persisting a new leaderboard entry."""

    display_name: str
    decibel: float
    created_at: datetime
    season_number: int
    owner_id: str | None = None
    audio_key: str | None = None
    audio_mimetype: str | None = None


@dataclass(frozen=True, slots=True)
class RolloverOutcome:
    """Result of a rollover attempt."""

    season: Season
    rolled_over: bool
    cleared_entries: int = 0
    orphaned_audio: tuple[str, ...] = ()


class LeaderboardStorage(ABC):
    """Abstract persistence contract for entries, history and seasons.

    Implementations must keep entry ids unique and monotonically increasing,
    order leaderboard reads by descending decibel then ascending id, and
    perform :meth:`create_season` and :meth:`rollover` atomically.
    """

    async def initialize(self) -> None:
        """Prepare the backend for use."""

    async def close(self) -> None:
        """Release any held resources."""

    async def __aenter__(self) -> "LeaderboardStorage":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.close()

    @abstractmethod
    async def create_entry(self, payload: RankingEntryCreate) -> RankingEntry:
        """Persist an entry, plus a history row when it has an owner."""

    @abstractmethod
    async def get_entry(self, entry_id: int) -> RankingEntry | None:
        """Return an entry by id."""

    @abstractmethod
    async def delete_entry(self, entry_id: int) -> RankingEntry | None:
        """Delete an entry and detach its audio from the mirrored history row.

        Returns the deleted entry, or ``None`` if it did not exist.
        """

    @abstractmethod
    async def list_entries(
        self, season_number: int, limit: int | None = None
    ) -> list[RankingEntry]:
        """Return a season's entries in leaderboard order."""

    @abstractmethod
    async def rank_of(self, entry: RankingEntry) -> int:
        """Return the 1-based position of ``entry`` within its season."""

    @abstractmethod
    async def list_history(self, owner_id: str, limit: int | None = None) -> list[HistoryEntry]:
        """Return an owner's history rows, newest first."""

    @abstractmethod
    async def audio_mimetype(self, audio_key: str) -> str | None:
        """Return the MIME type of a referenced audio key, else ``None``."""

    @abstractmethod
    async def get_current_season(self) -> Season | None:
        """Return the season with the highest number."""

    @abstractmethod
    async def create_season(self, season: Season) -> Season:
        """Insert ``season`` unless that number exists; return the current season."""

    @abstractmethod
    async def rollover(self, now: datetime, length: timedelta) -> RolloverOutcome:
        """Atomically close the current season if overdue and open the next.

        The overdue check must be made against freshly read state inside the
        same critical section as the delete and insert.
        """


__all__ = [
    "HistoryEntry",
    "LeaderboardStorage",
    "RankingEntry",
    "RankingEntryCreate",
    "RolloverOutcome",
    "Season",
    "StorageUnavailableError",
    "ensure_utc",
]
