"""Leaderboard operations written once against the storage interface."""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

from ..seasons import SeasonScheduler
from ..signal import round_tenth
from ..storage import (
    HistoryEntry,
    LeaderboardStorage,
    LocalAudioStore,
    RankingEntryCreate,
    StorageUnavailableError,
)
from .exceptions import EntryNotFoundError, EntryPermissionError, SubmissionValidationError
from .models import LeaderboardRow, RankingSubmission, SubmissionReceipt

logger = logging.getLogger(__name__)

MIN_DECIBEL = 0.0
MAX_DECIBEL = 200.0
MAX_DISPLAY_NAME = 20
MAX_AUDIO_BYTES = 20 * 1024 * 1024
DEFAULT_LIST_LIMIT = 100
DEFAULT_HISTORY_LIMIT = 50


def validate_display_name(value: str | None) -> str:
    """Return the trimmed display name or raise."""

    trimmed = (value or "").strip()
    if not trimmed:
        raise SubmissionValidationError("display name is required")
    if len(trimmed) > MAX_DISPLAY_NAME:
        raise SubmissionValidationError(
            f"display name must be {MAX_DISPLAY_NAME} characters or fewer"
        )
    return trimmed


def validate_decibel(value: float | str | None) -> float:
    """Parse ``value`` and return it rounded to one decimal place."""

    if value is None or (isinstance(value, str) and not value.strip()):
        raise SubmissionValidationError("decibel value is required")
    if isinstance(value, bool):
        raise SubmissionValidationError("decibel value must be a number")
    try:
        decibel = float(value)
    except (TypeError, ValueError) as exc:
        raise SubmissionValidationError("decibel value must be a number") from exc
    if not math.isfinite(decibel) or not MIN_DECIBEL <= decibel <= MAX_DECIBEL:
        raise SubmissionValidationError(
            f"decibel value must be between {MIN_DECIBEL:g} and {MAX_DECIBEL:g}"
        )
    return round_tenth(decibel)


def validate_audio(data: bytes | None, mimetype: str | None, *, max_bytes: int) -> None:
    if data is None:
        return
    if not mimetype or not mimetype.lower().startswith("audio/"):
        raise SubmissionValidationError("only audio files are accepted")
    if not data:
        raise SubmissionValidationError("uploaded audio is empty")
    if len(data) > max_bytes:
        raise SubmissionValidationError(f"audio must be {max_bytes} bytes or fewer")


class RankingService:
    """Submit, list and delete leaderboard entries and read personal history."""

    def __init__(
        self,
        storage: LeaderboardStorage,
        audio_store: LocalAudioStore,
        seasons: SeasonScheduler,
        *,
        max_audio_bytes: int = MAX_AUDIO_BYTES,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._storage = storage
        self._audio_store = audio_store
        self._seasons = seasons
        self._max_audio_bytes = max_audio_bytes
        self._now = now or (lambda: datetime.now(UTC))

    @property
    def storage(self) -> LeaderboardStorage:
        return self._storage

    @property
    def seasons(self) -> SeasonScheduler:
        return self._seasons

    async def submit(self, submission: RankingSubmission) -> SubmissionReceipt:
        """Validate and persist a score, returning its id and live rank."""

        display_name = validate_display_name(submission.display_name)
        decibel = validate_decibel(submission.decibel)
        validate_audio(
            submission.audio, submission.audio_mimetype, max_bytes=self._max_audio_bytes
        )

        audio_key: str | None = None
        audio_mimetype: str | None = None
        if submission.audio is not None and submission.is_audio_public:
            audio_mimetype = submission.audio_mimetype
            audio_key = await self._audio_store.save(submission.audio, audio_mimetype or "")

        entry = None
        try:
            async with self._seasons.holding_season() as season:
                entry = await self._storage.create_entry(
                    RankingEntryCreate(
                        display_name=display_name,
                        decibel=decibel,
                        created_at=self._now(),
                        season_number=season.season_number,
                        owner_id=submission.owner_id,
                        audio_key=audio_key,
                        audio_mimetype=audio_mimetype,
                    )
                )
                rank = await self._storage.rank_of(entry)
        except StorageUnavailableError:
            # A committed entry still references its audio.
            if entry is None and audio_key is not None:
                await self._audio_store.delete(audio_key)
            raise

        logger.info(
            "Entry %d scored %.1f dB, rank %d in season %d",
            entry.id,
            entry.decibel,
            rank,
            entry.season_number,
        )
        return SubmissionReceipt(
            id=entry.id,
            rank=rank,
            season_number=entry.season_number,
            decibel=entry.decibel,
        )

    async def list(
        self, limit: int = DEFAULT_LIST_LIMIT, *, viewer_id: str | None = None
    ) -> list[LeaderboardRow]:
        """Return the current season's leaderboard, best first."""

        if limit < 1:
            raise SubmissionValidationError("limit must be at least 1")
        season = await self._seasons.current_season()
        entries = await self._storage.list_entries(season.season_number, limit)
        return [
            LeaderboardRow(
                rank=position,
                entry=entry,
                is_own_entry=viewer_id is not None and entry.owner_id == viewer_id,
            )
            for position, entry in enumerate(entries, start=1)
        ]

    async def delete(self, entry_id: int, requester_id: str | None) -> None:
        """Remove an entry owned by ``requester_id`` together with its audio."""

        entry = await self._storage.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        if entry.owner_id is None or entry.owner_id != requester_id:
            raise EntryPermissionError(f"entry {entry_id} belongs to someone else")

        removed = await self._storage.delete_entry(entry_id)
        if removed is None:
            raise EntryNotFoundError(entry_id)
        if removed.audio_key is not None:
            await self._audio_store.delete(removed.audio_key)
        logger.info("Entry %d deleted by its owner", entry_id)

    async def history(
        self, owner_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[HistoryEntry]:
        """Return the owner's personal records, newest first."""

        if limit < 1:
            raise SubmissionValidationError("limit must be at least 1")
        return await self._storage.list_history(owner_id, limit)

    async def audio(self, key: str) -> tuple[Path, str]:
        """Resolve a stored recording to its file and MIME type."""

        safe_key = Path(key).name
        mimetype = await self._storage.audio_mimetype(safe_key)
        if mimetype is None or not await self._audio_store.exists(safe_key):
            raise EntryNotFoundError(key)
        return self._audio_store.path_for(safe_key), mimetype
