"""Flat-file backend keeping each collection in a JSON document."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

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

RANKINGS = "rankings"
HISTORY = "history"
SEASONS = "seasons"


def resolve_data_dir(explicit: Path | None = None) -> Path:
    """Return the absolute data directory honoring environment overrides."""

    env_root = os.environ.get("SHOUTRANK_DATA_DIR")
    if explicit is not None:
        root_path = explicit
    elif env_root:
        root_path = Path(env_root).expanduser()
    else:
        root_path = Path("data")
    return root_path if root_path.is_absolute() else root_path.resolve()


def _encode(record: Any) -> dict[str, Any]:
    payload = asdict(record)
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
    return payload


def _decode_entry(item: dict[str, Any]) -> RankingEntry:
    return RankingEntry(
        id=int(item["id"]),
        display_name=item["display_name"],
        decibel=float(item["decibel"]),
        created_at=ensure_utc(item["created_at"]),
        season_number=int(item["season_number"]),
        owner_id=item.get("owner_id"),
        audio_key=item.get("audio_key"),
        audio_mimetype=item.get("audio_mimetype"),
    )


def _decode_history(item: dict[str, Any]) -> HistoryEntry:
    return HistoryEntry(
        id=int(item["id"]),
        owner_id=item["owner_id"],
        display_name=item["display_name"],
        decibel=float(item["decibel"]),
        created_at=ensure_utc(item["created_at"]),
        season_number=int(item["season_number"]),
        ranking_entry_id=item.get("ranking_entry_id"),
        audio_key=item.get("audio_key"),
        audio_mimetype=item.get("audio_mimetype"),
    )


def _decode_season(item: dict[str, Any]) -> Season:
    return Season(
        season_number=int(item["season_number"]),
        started_at=ensure_utc(item["started_at"]),
        next_reset_at=ensure_utc(item["next_reset_at"]),
    )


def _board_order(entries: list[RankingEntry]) -> list[RankingEntry]:
    return sorted(entries, key=lambda entry: (-entry.decibel, entry.id))


class JsonFileStorage(LeaderboardStorage):
    """Leaderboard persistence in ``{"next_id": n, "items": [...]}`` documents.

    Every mutation rewrites its document through a temporary file and
    ``os.replace`` so readers never observe a half-written file. A single
    lock serialises all access within the process.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self._data_dir = resolve_data_dir(data_dir)
        self._lock = asyncio.Lock()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    async def initialize(self) -> None:
        try:
            await asyncio.to_thread(self._data_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailableError(f"cannot create {self._data_dir}: {exc}") from exc

    def _path(self, name: str) -> Path:
        return self._data_dir / f"{name}.json"

    def _read_sync(self, name: str) -> dict[str, Any]:
        path = self._path(name)
        if not path.exists():
            return {"next_id": 1, "items": []}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StorageUnavailableError(f"{path} is corrupt: {exc}") from exc

    def _write_sync(self, name: str, document: dict[str, Any]) -> None:
        path = self._path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{name}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _read(self, name: str) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._read_sync, name)
        except OSError as exc:
            raise StorageUnavailableError(f"cannot read {name}: {exc}") from exc

    async def _write(self, name: str, document: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._write_sync, name, document)
        except OSError as exc:
            raise StorageUnavailableError(f"cannot write {name}: {exc}") from exc

    async def create_entry(self, payload: RankingEntryCreate) -> RankingEntry:
        async with self._lock:
            rankings = await self._read(RANKINGS)
            entry = RankingEntry(
                id=int(rankings["next_id"]),
                display_name=payload.display_name,
                decibel=payload.decibel,
                created_at=payload.created_at,
                season_number=payload.season_number,
                owner_id=payload.owner_id,
                audio_key=payload.audio_key,
                audio_mimetype=payload.audio_mimetype,
            )
            rankings["next_id"] = entry.id + 1
            rankings["items"].append(_encode(entry))

            history = None
            if payload.owner_id is not None:
                history = await self._read(HISTORY)
                row = HistoryEntry(
                    id=int(history["next_id"]),
                    owner_id=payload.owner_id,
                    display_name=payload.display_name,
                    decibel=payload.decibel,
                    created_at=payload.created_at,
                    season_number=payload.season_number,
                    ranking_entry_id=entry.id,
                    audio_key=payload.audio_key,
                    audio_mimetype=payload.audio_mimetype,
                )
                history["next_id"] = row.id + 1
                history["items"].append(_encode(row))

            await self._write(RANKINGS, rankings)
            if history is not None:
                try:
                    await self._write(HISTORY, history)
                except StorageUnavailableError:
                    await self._withdraw_entry(rankings, entry.id)
                    raise
            return entry

    async def _withdraw_entry(self, rankings: dict[str, Any], entry_id: int) -> None:
        """Undo a rankings write whose history row could not be stored.

        ``next_id`` keeps its advanced value so the id is not handed out again.
        """

        rankings["items"] = [item for item in rankings["items"] if int(item["id"]) != entry_id]
        try:
            await self._write(RANKINGS, rankings)
        except StorageUnavailableError:
            logger.exception("Entry %d is stored without its history row", entry_id)

    async def get_entry(self, entry_id: int) -> RankingEntry | None:
        async with self._lock:
            rankings = await self._read(RANKINGS)
        for item in rankings["items"]:
            if int(item["id"]) == entry_id:
                return _decode_entry(item)
        return None

    async def delete_entry(self, entry_id: int) -> RankingEntry | None:
        async with self._lock:
            rankings = await self._read(RANKINGS)
            kept = [item for item in rankings["items"] if int(item["id"]) != entry_id]
            if len(kept) == len(rankings["items"]):
                return None
            removed = next(
                _decode_entry(item) for item in rankings["items"] if int(item["id"]) == entry_id
            )
            rankings["items"] = kept
            await self._write(RANKINGS, rankings)

            history = await self._read(HISTORY)
            touched = False
            for item in history["items"]:
                if item.get("ranking_entry_id") == entry_id:
                    item["ranking_entry_id"] = None
                    item["audio_key"] = None
                    item["audio_mimetype"] = None
                    touched = True
            if touched:
                await self._write(HISTORY, history)
            return removed

    async def list_entries(
        self, season_number: int, limit: int | None = None
    ) -> list[RankingEntry]:
        async with self._lock:
            rankings = await self._read(RANKINGS)
        entries = [
            _decode_entry(item)
            for item in rankings["items"]
            if int(item["season_number"]) == season_number
        ]
        ordered = _board_order(entries)
        return ordered if limit is None else ordered[:limit]

    async def rank_of(self, entry: RankingEntry) -> int:
        entries = await self.list_entries(entry.season_number)
        return 1 + sum(1 for other in entries if other.outranks(entry))

    async def list_history(self, owner_id: str, limit: int | None = None) -> list[HistoryEntry]:
        async with self._lock:
            history = await self._read(HISTORY)
        rows = [_decode_history(item) for item in history["items"] if item["owner_id"] == owner_id]
        rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
        return rows if limit is None else rows[:limit]

    async def audio_mimetype(self, audio_key: str) -> str | None:
        async with self._lock:
            rankings = await self._read(RANKINGS)
            history = await self._read(HISTORY)
        for item in [*rankings["items"], *history["items"]]:
            if item.get("audio_key") == audio_key:
                return item.get("audio_mimetype") or "application/octet-stream"
        return None

    async def get_current_season(self) -> Season | None:
        async with self._lock:
            return await self._current_season()

    async def _current_season(self) -> Season | None:
        seasons = await self._read(SEASONS)
        if not seasons["items"]:
            return None
        latest = max(seasons["items"], key=lambda item: int(item["season_number"]))
        return _decode_season(latest)

    async def create_season(self, season: Season) -> Season:
        async with self._lock:
            seasons = await self._read(SEASONS)
            numbers = {int(item["season_number"]) for item in seasons["items"]}
            if season.season_number in numbers:
                logger.info(
                    "Season %d already exists; using the stored row", season.season_number
                )
            else:
                seasons["items"].append(_encode(season))
                await self._write(SEASONS, seasons)
            current = await self._current_season()
            if current is None:
                raise StorageUnavailableError(f"{self._path(SEASONS)} lost its seasons")
            return current

    async def rollover(self, now: datetime, length: timedelta) -> RolloverOutcome:
        async with self._lock:
            current = await self._current_season()
            if current is None:
                raise LookupError("no season to roll over")
            if not current.is_overdue(now):
                return RolloverOutcome(season=current, rolled_over=False)

            rankings = await self._read(RANKINGS)
            closing = [
                item
                for item in rankings["items"]
                if int(item["season_number"]) <= current.season_number
            ]
            orphaned_audio = tuple(
                item["audio_key"]
                for item in closing
                if item.get("audio_key") and item.get("owner_id") is None
            )
            rankings["items"] = [
                item
                for item in rankings["items"]
                if int(item["season_number"]) > current.season_number
            ]
            cleared_ids = {int(item["id"]) for item in closing}
            history = await self._read(HISTORY)
            unlinked = False
            for item in history["items"]:
                if item.get("ranking_entry_id") in cleared_ids:
                    item["ranking_entry_id"] = None
                    unlinked = True

            upcoming = Season.opening(current.season_number + 1, now, length)
            seasons = await self._read(SEASONS)
            seasons["items"].append(_encode(upcoming))

            # The season document is written last: a crash in between leaves
            # the old season current, and the next check repeats the rollover.
            await self._write(RANKINGS, rankings)
            if unlinked:
                await self._write(HISTORY, history)
            await self._write(SEASONS, seasons)
            return RolloverOutcome(
                season=upcoming,
                rolled_over=True,
                cleared_entries=len(closing),
                orphaned_audio=orphaned_audio,
            )
