"""Database models for the leaderboard and season tables."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SeasonRecord(Base):
    """One competition window; the highest ``season_number`` is current."""

    __tablename__ = "seasons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    season_number: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_reset_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class RankingEntryRecord(Base):
    """A live leaderboard row, cleared at every season rollover."""

    __tablename__ = "ranking_entries"
    __table_args__ = (
        CheckConstraint(
            "decibel >= 0 AND decibel <= 200", name="ck_ranking_entries_decibel"
        ),
        Index("ix_ranking_entries_season_order", "season_number", "decibel"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    display_name: Mapped[str] = mapped_column(String(20), nullable=False)
    decibel: Mapped[float] = mapped_column(Float, nullable=False)
    audio_key: Mapped[str | None] = mapped_column(String(128))
    audio_mimetype: Mapped[str | None] = mapped_column(String(64))
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    season_number: Mapped[int] = mapped_column(Integer, nullable=False)


class UserHistoryRecord(Base):
    """Durable personal record that survives season resets and deletions."""

    __tablename__ = "user_history"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ranking_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("ranking_entries.id", ondelete="SET NULL")
    )
    display_name: Mapped[str] = mapped_column(String(20), nullable=False)
    decibel: Mapped[float] = mapped_column(Float, nullable=False)
    audio_key: Mapped[str | None] = mapped_column(String(128))
    audio_mimetype: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    season_number: Mapped[int] = mapped_column(Integer, nullable=False)
