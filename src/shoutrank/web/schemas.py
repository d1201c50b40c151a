"""Response payloads of the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..ranking import LeaderboardRow, SubmissionReceipt
from ..ranks import RankTier, classify
from ..storage import HistoryEntry, Season


def audio_url(key: str | None) -> str | None:
    return f"/api/audio/{key}" if key else None


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TierRead(CamelModel):
    key: str
    label: str
    threshold: float

    @classmethod
    def from_tier(cls, tier: RankTier) -> "TierRead":
        return cls(key=tier.key, label=tier.label, threshold=tier.threshold)


class SubmissionRead(CamelModel):
    id: int
    rank: int
    season_number: int
    decibel_value: float
    tier: TierRead

    @classmethod
    def from_receipt(cls, receipt: SubmissionReceipt) -> "SubmissionRead":
        return cls(
            id=receipt.id,
            rank=receipt.rank,
            season_number=receipt.season_number,
            decibel_value=receipt.decibel,
            tier=TierRead.from_tier(receipt.tier),
        )


class LeaderboardRowRead(CamelModel):
    rank: int
    id: int
    display_name: str
    decibel_value: float
    tier: TierRead
    has_audio: bool
    audio_url: Optional[str] = None
    created_at: datetime
    is_own_entry: bool

    @classmethod
    def from_row(cls, row: LeaderboardRow) -> "LeaderboardRowRead":
        entry = row.entry
        return cls(
            rank=row.rank,
            id=entry.id,
            display_name=entry.display_name,
            decibel_value=entry.decibel,
            tier=TierRead.from_tier(row.tier),
            has_audio=entry.has_audio,
            audio_url=audio_url(entry.audio_key),
            created_at=entry.created_at,
            is_own_entry=row.is_own_entry,
        )


class HistoryRead(CamelModel):
    id: int
    decibel_value: float
    tier: TierRead
    created_at: datetime
    season_number: int
    has_audio: bool
    audio_url: Optional[str] = None

    @classmethod
    def from_history(cls, row: HistoryEntry) -> "HistoryRead":
        return cls(
            id=row.id,
            decibel_value=row.decibel,
            tier=TierRead.from_tier(classify(row.decibel)),
            created_at=row.created_at,
            season_number=row.season_number,
            has_audio=row.has_audio,
            audio_url=audio_url(row.audio_key),
        )


class SeasonRead(CamelModel):
    season_number: int
    started_at: datetime
    next_reset_at: datetime

    @classmethod
    def from_season(cls, season: Season) -> "SeasonRead":
        return cls(
            season_number=season.season_number,
            started_at=season.started_at,
            next_reset_at=season.next_reset_at,
        )


class DeleteResponse(BaseModel):
    deleted: bool
