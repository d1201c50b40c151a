"""Durable leaderboard storage facade."""

from .audio import LocalAudioStore, resolve_audio_root
from .base import (
    HistoryEntry,
    LeaderboardStorage,
    RankingEntry,
    RankingEntryCreate,
    RolloverOutcome,
    Season,
    StorageUnavailableError,
    ensure_utc,
)
from .files import JsonFileStorage, resolve_data_dir
from .sql import SqlLeaderboardStorage

__all__ = [
    "HistoryEntry",
    "JsonFileStorage",
    "LeaderboardStorage",
    "LocalAudioStore",
    "RankingEntry",
    "RankingEntryCreate",
    "RolloverOutcome",
    "Season",
    "SqlLeaderboardStorage",
    "StorageUnavailableError",
    "ensure_utc",
    "resolve_audio_root",
    "resolve_data_dir",
]
