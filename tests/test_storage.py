"""Contract tests run against both storage backends."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from shoutrank.storage import (
    JsonFileStorage,
    LocalAudioStore,
    RankingEntryCreate,
    Season,
    StorageUnavailableError,
)

START = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
WINDOW = timedelta(days=14)


def _entry(name: str, decibel: float, *, owner: str | None = None, season: int = 1, **extra):
    return RankingEntryCreate(
        display_name=name,
        decibel=decibel,
        created_at=extra.pop("created_at", START),
        season_number=season,
        owner_id=owner,
        **extra,
    )


@pytest.mark.asyncio
async def test_entries_are_ordered_by_decibel_then_insertion(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        first = await storage.create_entry(_entry("first", 100.0))
        loud = await storage.create_entry(_entry("loud", 110.5))
        tie = await storage.create_entry(_entry("tie", 100.0))

        listing = await storage.list_entries(1)
        assert [entry.id for entry in listing] == [loud.id, first.id, tie.id]
        assert await storage.list_entries(1) == listing
        assert [entry.id for entry in await storage.list_entries(1, 2)] == [loud.id, first.id]

        assert await storage.rank_of(loud) == 1
        assert await storage.rank_of(first) == 2
        assert await storage.rank_of(tie) == 3
        assert first.id < loud.id < tie.id
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_owned_entries_write_history(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        anon = await storage.create_entry(_entry("anon", 90.0))
        early = await storage.create_entry(_entry("taro", 95.0, owner="u-1"))
        late = await storage.create_entry(
            _entry("taro", 97.5, owner="u-1", created_at=START + timedelta(minutes=5))
        )

        history = await storage.list_history("u-1")
        assert [row.ranking_entry_id for row in history] == [late.id, early.id]
        assert history[0].decibel == 97.5
        assert history[0].created_at == START + timedelta(minutes=5)
        assert await storage.list_history("nobody") == []
        assert anon.owner_id is None
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_delete_entry_detaches_history_audio(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        entry = await storage.create_entry(
            _entry("taro", 101.0, owner="u-1", audio_key="a.webm", audio_mimetype="audio/webm")
        )
        assert await storage.audio_mimetype("a.webm") == "audio/webm"

        removed = await storage.delete_entry(entry.id)

        assert removed == entry
        assert await storage.get_entry(entry.id) is None
        assert await storage.delete_entry(entry.id) is None
        history = await storage.list_history("u-1")
        assert len(history) == 1 and history[0].audio_key is None
        assert await storage.audio_mimetype("a.webm") is None
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_ids_are_never_reused(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        first = await storage.create_entry(_entry("a", 80.0))
        await storage.delete_entry(first.id)
        second = await storage.create_entry(_entry("b", 80.0))
        assert second.id > first.id
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_create_season_keeps_the_first_writer(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        assert await storage.get_current_season() is None
        first = await storage.create_season(Season.opening(1, START, WINDOW))
        second = await storage.create_season(
            Season.opening(1, START + timedelta(hours=1), WINDOW)
        )

        assert first.season_number == second.season_number == 1
        assert second.started_at == START
        assert first.next_reset_at == START + WINDOW
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_rollover_clears_season_and_keeps_history(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        await storage.create_season(Season.opening(1, START, WINDOW))
        await storage.create_entry(_entry("taro", 101.0, owner="u-1"))
        await storage.create_entry(
            _entry("anon", 99.0, audio_key="anon.webm", audio_mimetype="audio/webm")
        )

        early = await storage.rollover(START + timedelta(days=3), WINDOW)
        assert not early.rolled_over
        assert early.season.season_number == 1

        overdue = START + WINDOW + timedelta(seconds=1)
        outcome = await storage.rollover(overdue, WINDOW)
        assert outcome.rolled_over
        assert outcome.season.season_number == 2
        assert outcome.season.next_reset_at == overdue + WINDOW
        assert outcome.cleared_entries == 2
        assert outcome.orphaned_audio == ("anon.webm",)

        repeat = await storage.rollover(overdue + timedelta(minutes=1), WINDOW)
        assert not repeat.rolled_over
        assert repeat.season.season_number == 2

        assert await storage.list_entries(1) == []
        history = await storage.list_history("u-1")
        assert [row.season_number for row in history] == [1]
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_concurrent_rollovers_open_one_season(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        await storage.create_season(Season.opening(1, START, WINDOW))
        overdue = START + WINDOW + timedelta(hours=1)

        outcomes = await asyncio.gather(
            *(storage.rollover(overdue, WINDOW) for _ in range(3)),
            return_exceptions=True,
        )

        rolled = [o for o in outcomes if not isinstance(o, Exception) and o.rolled_over]
        assert len(rolled) == 1
        current = await storage.get_current_season()
        assert current.season_number == 2
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_corrupt_file_is_reported_as_storage_failure(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "data")
    await storage.initialize()
    (tmp_path / "data" / "rankings.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(StorageUnavailableError):
        await storage.list_entries(1)


@pytest.mark.asyncio
async def test_audio_store_round_trip(tmp_path: Path) -> None:
    store = LocalAudioStore(tmp_path / "audio")

    key = await store.save(b"ogg-bytes", "audio/ogg;codecs=opus")

    assert key.endswith(".ogg")
    assert await store.exists(key)
    assert store.path_for(f"../../{key}") == store.path_for(key)
    await store.delete(key)
    assert not await store.exists(key)


def test_data_dir_uses_environment_override(monkeypatch, tmp_path) -> None:
    data_dir = tmp_path / "custom-data"
    monkeypatch.setenv("SHOUTRANK_DATA_DIR", str(data_dir))

    storage = JsonFileStorage()

    assert storage.data_dir == data_dir.resolve()


@pytest.mark.asyncio
async def test_rollover_unlinks_history_of_cleared_entries(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        await storage.create_season(Season.opening(1, START, WINDOW))
        entry = await storage.create_entry(_entry("taro", 101.0, owner="u-1"))
        assert (await storage.list_history("u-1"))[0].ranking_entry_id == entry.id

        await storage.rollover(START + WINDOW + timedelta(seconds=1), WINDOW)

        history = await storage.list_history("u-1")
        assert len(history) == 1
        assert history[0].ranking_entry_id is None
        assert history[0].decibel == 101.0
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_rollover_clears_entries_left_in_older_seasons(storage_factory) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        await storage.create_season(Season.opening(1, START, WINDOW))
        first_reset = START + WINDOW + timedelta(seconds=1)
        await storage.rollover(first_reset, WINDOW)
        # Written by a process that still believed season 1 was current.
        stale = await storage.create_entry(
            _entry("late", 95.0, season=1, audio_key="late.webm", audio_mimetype="audio/webm")
        )

        outcome = await storage.rollover(first_reset + WINDOW + timedelta(seconds=1), WINDOW)

        assert outcome.season.season_number == 3
        assert outcome.cleared_entries == 1
        assert outcome.orphaned_audio == ("late.webm",)
        assert await storage.get_entry(stale.id) is None
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_failed_history_write_withdraws_the_entry(tmp_path: Path, monkeypatch) -> None:
    storage = JsonFileStorage(tmp_path / "data")
    await storage.initialize()
    await storage.create_entry(_entry("first", 90.0))
    original_write = storage._write

    async def write(name, document):
        if name == "history":
            raise StorageUnavailableError("cannot write history: disk full")
        await original_write(name, document)

    monkeypatch.setattr(storage, "_write", write)

    with pytest.raises(StorageUnavailableError):
        await storage.create_entry(_entry("taro", 101.0, owner="u-1"))

    assert [entry.display_name for entry in await storage.list_entries(1)] == ["first"]
    monkeypatch.undo()
    retry = await storage.create_entry(_entry("taro", 101.0, owner="u-1"))
    assert retry.id == 3
    assert [row.ranking_entry_id for row in await storage.list_history("u-1")] == [3]
