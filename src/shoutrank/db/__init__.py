"""Relational persistence for ShoutRank."""

from .models import RankingEntryRecord, SeasonRecord, UserHistoryRecord
from .session import (
    DEFAULT_DB_URL,
    create_engine,
    current_revision,
    get_sessionmaker,
    init_db,
    resolve_db_url,
)

__all__ = [
    "DEFAULT_DB_URL",
    "RankingEntryRecord",
    "SeasonRecord",
    "UserHistoryRecord",
    "create_engine",
    "current_revision",
    "get_sessionmaker",
    "init_db",
    "resolve_db_url",
]
