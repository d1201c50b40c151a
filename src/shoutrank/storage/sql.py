"""Relational backend built on the async SQLAlchemy engine."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..db import (
    RankingEntryRecord,
    SeasonRecord,
    UserHistoryRecord,
    create_engine,
    get_sessionmaker,
)
from ..db.session import init_db, session_scope
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

logger = logging.getLogger(__name__)


class SqlLeaderboardStorage(LeaderboardStorage):
    """Leaderboard persistence in a relational database."""

    def __init__(
        self, *, engine: AsyncEngine | None = None, db_url: str | None = None
    ) -> None:
        if engine is None:
            self.engine = create_engine(db_url)
        else:
            self.engine = engine
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            self._sessionmaker = get_sessionmaker(self.engine)
        return self._sessionmaker

    async def initialize(self) -> None:
        """Apply database migrations on first launch."""

        await init_db(self.engine)

    async def close(self) -> None:
        """Dispose of the underlying connection pool."""

        await self.engine.dispose()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with session_scope(self.sessionmaker) as session:
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"database unavailable: {exc}") from exc

    async def create_entry(self, payload: RankingEntryCreate) -> RankingEntry:
        async with self._transaction() as session:
            record = RankingEntryRecord(
                display_name=payload.display_name,
                decibel=payload.decibel,
                audio_key=payload.audio_key,
                audio_mimetype=payload.audio_mimetype,
                owner_id=payload.owner_id,
                created_at=payload.created_at,
                season_number=payload.season_number,
            )
            session.add(record)
            await session.flush()

            if payload.owner_id is not None:
                session.add(
                    UserHistoryRecord(
                        owner_id=payload.owner_id,
                        ranking_entry_id=record.id,
                        display_name=payload.display_name,
                        decibel=payload.decibel,
                        audio_key=payload.audio_key,
                        audio_mimetype=payload.audio_mimetype,
                        created_at=payload.created_at,
                        season_number=payload.season_number,
                    )
                )
                await session.flush()

            return self._to_entry(record)

    async def get_entry(self, entry_id: int) -> RankingEntry | None:
        async with self._transaction() as session:
            record = await session.get(RankingEntryRecord, entry_id)
            return self._to_entry(record) if record is not None else None

    async def delete_entry(self, entry_id: int) -> RankingEntry | None:
        async with self._transaction() as session:
            record = await session.get(RankingEntryRecord, entry_id)
            if record is None:
                return None
            entry = self._to_entry(record)
            if entry.audio_key is not None:
                await session.execute(
                    update(UserHistoryRecord)
                    .where(UserHistoryRecord.ranking_entry_id == entry_id)
                    .values(audio_key=None, audio_mimetype=None)
                )
            await session.delete(record)
            return entry

    async def list_entries(
        self, season_number: int, limit: int | None = None
    ) -> list[RankingEntry]:
        stmt = (
            select(RankingEntryRecord)
            .where(RankingEntryRecord.season_number == season_number)
            .order_by(RankingEntryRecord.decibel.desc(), RankingEntryRecord.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [self._to_entry(record) for record in result.scalars().all()]

    async def rank_of(self, entry: RankingEntry) -> int:
        stmt = (
            select(func.count())
            .select_from(RankingEntryRecord)
            .where(
                RankingEntryRecord.season_number == entry.season_number,
                or_(
                    RankingEntryRecord.decibel > entry.decibel,
                    and_(
                        RankingEntryRecord.decibel == entry.decibel,
                        RankingEntryRecord.id < entry.id,
                    ),
                ),
            )
        )
        async with self._transaction() as session:
            ahead = (await session.execute(stmt)).scalar_one()
            return int(ahead) + 1

    async def list_history(self, owner_id: str, limit: int | None = None) -> list[HistoryEntry]:
        stmt = (
            select(UserHistoryRecord)
            .where(UserHistoryRecord.owner_id == owner_id)
            .order_by(UserHistoryRecord.created_at.desc(), UserHistoryRecord.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [self._to_history(record) for record in result.scalars().all()]

    async def audio_mimetype(self, audio_key: str) -> str | None:
        async with self._transaction() as session:
            for model in (RankingEntryRecord, UserHistoryRecord):
                result = await session.execute(
                    select(model.audio_mimetype).where(model.audio_key == audio_key).limit(1)
                )
                row = result.first()
                if row is not None:
                    return row[0] or "application/octet-stream"
            return None

    async def get_current_season(self) -> Season | None:
        async with self._transaction() as session:
            record = await self._current_season_record(session)
            return self._to_season(record) if record is not None else None

    async def create_season(self, season: Season) -> Season:
        try:
            async with self._transaction() as session:
                session.add(
                    SeasonRecord(
                        season_number=season.season_number,
                        started_at=season.started_at,
                        next_reset_at=season.next_reset_at,
                    )
                )
        except IntegrityError:
            logger.info(
                "Season %d already exists; using the stored row", season.season_number
            )
        current = await self.get_current_season()
        if current is None:
            raise StorageUnavailableError("season row vanished after creation")
        return current

    async def rollover(self, now: datetime, length: timedelta) -> RolloverOutcome:
        try:
            async with self._transaction() as session:
                record = await self._current_season_record(session)
                if record is None:
                    raise LookupError("no season to roll over")
                current = self._to_season(record)
                if not current.is_overdue(now):
                    return RolloverOutcome(season=current, rolled_over=False)

                orphaned = await session.execute(
                    select(RankingEntryRecord.audio_key).where(
                        RankingEntryRecord.season_number <= current.season_number,
                        RankingEntryRecord.audio_key.is_not(None),
                        RankingEntryRecord.owner_id.is_(None),
                    )
                )
                orphaned_audio = tuple(key for (key,) in orphaned.all())
                cleared = await session.execute(
                    delete(RankingEntryRecord).where(
                        RankingEntryRecord.season_number <= current.season_number
                    )
                )
                upcoming = Season.opening(current.season_number + 1, now, length)
                session.add(
                    SeasonRecord(
                        season_number=upcoming.season_number,
                        started_at=upcoming.started_at,
                        next_reset_at=upcoming.next_reset_at,
                    )
                )
                await session.flush()
                return RolloverOutcome(
                    season=upcoming,
                    rolled_over=True,
                    cleared_entries=cleared.rowcount or 0,
                    orphaned_audio=orphaned_audio,
                )
        except IntegrityError:
            logger.info("Concurrent rollover detected; keeping the stored season")
            current = await self.get_current_season()
            if current is None:
                raise StorageUnavailableError("season row vanished during rollover")
            return RolloverOutcome(season=current, rolled_over=False)

    @staticmethod
    async def _current_season_record(session: AsyncSession) -> SeasonRecord | None:
        result = await session.execute(
            select(SeasonRecord).order_by(SeasonRecord.season_number.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_season(record: SeasonRecord) -> Season:
        return Season(
            season_number=record.season_number,
            started_at=ensure_utc(record.started_at),
            next_reset_at=ensure_utc(record.next_reset_at),
        )

    @staticmethod
    def _to_entry(record: RankingEntryRecord) -> RankingEntry:
        return RankingEntry(
            id=record.id,
            display_name=record.display_name,
            decibel=record.decibel,
            created_at=ensure_utc(record.created_at),
            season_number=record.season_number,
            owner_id=record.owner_id,
            audio_key=record.audio_key,
            audio_mimetype=record.audio_mimetype,
        )

    @staticmethod
    def _to_history(record: UserHistoryRecord) -> HistoryEntry:
        return HistoryEntry(
            id=record.id,
            owner_id=record.owner_id,
            display_name=record.display_name,
            decibel=record.decibel,
            created_at=ensure_utc(record.created_at),
            season_number=record.season_number,
            ranking_entry_id=record.ranking_entry_id,
            audio_key=record.audio_key,
            audio_mimetype=record.audio_mimetype,
        )
