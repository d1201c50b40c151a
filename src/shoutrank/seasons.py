"""Season lifecycle: lazy creation and periodic leaderboard resets."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Callable

from .storage import LeaderboardStorage, LocalAudioStore, RolloverOutcome, Season

logger = logging.getLogger(__name__)

SEASON_LENGTH = timedelta(days=14)
CHECK_INTERVAL = 3600.0


class SeasonScheduler:
    """Own the current season and roll it over when its window elapses.

    Season creation and rollover go through one lock so this process never
    races itself; the storage backend re-reads and writes the season inside a
    single transaction, which keeps concurrent processes from opening the same
    season twice.
    """

    def __init__(
        self,
        storage: LeaderboardStorage,
        audio_store: LocalAudioStore | None = None,
        *,
        season_length: timedelta = SEASON_LENGTH,
        check_interval: float = CHECK_INTERVAL,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        if season_length <= timedelta(0):
            raise ValueError("season_length must be positive")
        if check_interval <= 0:
            raise ValueError("check_interval must be greater than zero")
        self._storage = storage
        self._audio_store = audio_store
        self._season_length = season_length
        self._check_interval = check_interval
        self._now = now or (lambda: datetime.now(UTC))
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def season_length(self) -> timedelta:
        return self._season_length

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def current_season(self) -> Season:
        """Return the current season, opening season 1 if none exists."""

        season = await self._storage.get_current_season()
        if season is not None:
            return season

        async with self._lock:
            return await self._ensure_season()

    @asynccontextmanager
    async def holding_season(self) -> AsyncIterator[Season]:
        """Yield the current season while holding off rollover.

        Writes stamped with the yielded season number land before any
        rollover this process runs, so they are never left in a closed season.
        """

        async with self._lock:
            yield await self._ensure_season()

    async def _ensure_season(self) -> Season:
        season = await self._storage.get_current_season()
        if season is not None:
            return season
        season = await self._storage.create_season(
            Season.opening(1, self._now(), self._season_length)
        )
        logger.info(
            "Opened season %d (resets at %s)",
            season.season_number,
            season.next_reset_at.isoformat(),
        )
        return season

    async def check_rollover(self) -> RolloverOutcome:
        """Reset the leaderboard if the current season's window has elapsed."""

        await self.current_season()
        async with self._lock:
            outcome = await self._storage.rollover(self._now(), self._season_length)

        if outcome.rolled_over:
            logger.info(
                "Season %d started; cleared %d leaderboard entries",
                outcome.season.season_number,
                outcome.cleared_entries,
            )
            if self._audio_store is not None:
                for key in outcome.orphaned_audio:
                    await self._audio_store.delete(key)
        return outcome

    async def start(self) -> None:
        """Run a check now and then every ``check_interval`` seconds."""

        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._run(self._stop_event), name="season-rollover"
        )

    async def stop(self) -> None:
        """Stop the background checks and wait for the task to exit."""

        task, stop_event = self._task, self._stop_event
        self._task = None
        self._stop_event = None
        if task is None or stop_event is None:
            return
        stop_event.set()
        await task

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.check_rollover()
            except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
                raise
            except Exception:
                logger.exception("Season rollover check failed; retrying next interval")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._check_interval)
            except asyncio.TimeoutError:
                continue


__all__ = ["CHECK_INTERVAL", "SEASON_LENGTH", "SeasonScheduler"]
