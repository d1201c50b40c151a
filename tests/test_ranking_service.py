"""Tests for the leaderboard service layer."""

from __future__ import annotations

import asyncio
import contextlib

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from shoutrank.db import UserHistoryRecord
from shoutrank.ranking import (
    EntryNotFoundError,
    EntryPermissionError,
    RankingService,
    RankingSubmission,
    SubmissionValidationError,
    validate_decibel,
    validate_display_name,
)
from shoutrank.seasons import SeasonScheduler
from shoutrank.storage import JsonFileStorage, StorageUnavailableError


@pytest_asyncio.fixture()
async def service(storage_factory, audio_store, clock):
    storage = storage_factory()
    await storage.initialize()
    scheduler = SeasonScheduler(storage, audio_store, now=clock)
    try:
        yield RankingService(storage, audio_store, scheduler, now=clock)
    finally:
        await storage.close()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("97.46", 97.5), (0, 0.0), (200, 200.0), ("  88.04 ", 88.0)],
)
def test_validate_decibel_accepts_range(raw, expected) -> None:
    assert validate_decibel(raw) == expected


@pytest.mark.parametrize("raw", [-1, 201, "loud", "", None, True, float("nan"), float("inf")])
def test_validate_decibel_rejects(raw) -> None:
    with pytest.raises(SubmissionValidationError):
        validate_decibel(raw)


def test_validate_display_name() -> None:
    assert validate_display_name("  Taro  ") == "Taro"
    assert validate_display_name("x" * 20) == "x" * 20
    for bad in ("", "   ", None, "x" * 21):
        with pytest.raises(SubmissionValidationError):
            validate_display_name(bad)


@pytest.mark.asyncio
async def test_submit_returns_live_rank(service) -> None:
    first = await service.submit(RankingSubmission("Taro", 101.0))
    louder = await service.submit(RankingSubmission("Hana", "108.36"))
    tied = await service.submit(RankingSubmission("Ken", 101.0))

    assert (first.rank, louder.rank, tied.rank) == (1, 1, 3)
    assert louder.decibel == 108.4
    assert louder.tier.key == "ozeki"
    assert first.season_number == 1

    rows = await service.list()
    assert [row.entry.display_name for row in rows] == ["Hana", "Taro", "Ken"]
    assert [row.rank for row in rows] == [1, 2, 3]


@pytest.mark.asyncio
@pytest.mark.parametrize("decibel", [-1, 201])
async def test_rejected_submission_stores_nothing(service, decibel) -> None:
    with pytest.raises(SubmissionValidationError):
        await service.submit(RankingSubmission("Taro", decibel))

    assert await service.list() == []


@pytest.mark.asyncio
async def test_private_audio_is_never_written(service, audio_store) -> None:
    await service.submit(
        RankingSubmission("Taro", 99.0, audio=b"bytes", audio_mimetype="audio/webm")
    )

    rows = await service.list()
    assert not rows[0].entry.has_audio
    assert not audio_store.root.exists() or not any(audio_store.root.iterdir())


@pytest.mark.asyncio
async def test_public_audio_is_served(service) -> None:
    receipt = await service.submit(
        RankingSubmission(
            "Taro",
            99.0,
            is_audio_public=True,
            audio=b"bytes",
            audio_mimetype="audio/ogg",
        )
    )

    entry = await service.storage.get_entry(receipt.id)
    path, mimetype = await service.audio(entry.audio_key)
    assert path.read_bytes() == b"bytes"
    assert mimetype == "audio/ogg"

    with pytest.raises(EntryNotFoundError):
        await service.audio("missing.webm")


@pytest.mark.asyncio
async def test_non_audio_upload_is_rejected(service) -> None:
    with pytest.raises(SubmissionValidationError):
        await service.submit(
            RankingSubmission(
                "Taro", 99.0, is_audio_public=True, audio=b"x", audio_mimetype="text/plain"
            )
        )


class _FailingStorage:
    """Wraps a real storage but refuses to persist entries."""

    def __init__(self, inner) -> None:
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def create_entry(self, payload):
        raise StorageUnavailableError("database unavailable")


@pytest.mark.asyncio
async def test_failed_persist_removes_saved_audio(storage_factory, audio_store, clock) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        failing = _FailingStorage(storage)
        scheduler = SeasonScheduler(failing, audio_store, now=clock)  # type: ignore[arg-type]
        service = RankingService(failing, audio_store, scheduler, now=clock)  # type: ignore[arg-type]

        with pytest.raises(StorageUnavailableError):
            await service.submit(
                RankingSubmission(
                    "Taro",
                    99.0,
                    is_audio_public=True,
                    audio=b"bytes",
                    audio_mimetype="audio/webm",
                )
            )

        assert not any(audio_store.root.iterdir())
        assert await storage.list_entries(1) == []
        assert await service.list() == []
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_delete_checks_ownership(service, audio_store) -> None:
    mine = await service.submit(
        RankingSubmission(
            "Taro",
            99.0,
            is_audio_public=True,
            audio=b"bytes",
            audio_mimetype="audio/webm",
            owner_id="u-1",
        )
    )
    anonymous = await service.submit(RankingSubmission("Anon", 90.0))
    entry = await service.storage.get_entry(mine.id)

    with pytest.raises(EntryPermissionError):
        await service.delete(mine.id, "u-2")
    with pytest.raises(EntryPermissionError):
        await service.delete(anonymous.id, "u-1")
    with pytest.raises(EntryNotFoundError):
        await service.delete(9999, "u-1")

    await service.delete(mine.id, "u-1")

    assert await service.storage.get_entry(mine.id) is None
    assert not await audio_store.exists(entry.audio_key)
    history = await service.history("u-1")
    assert len(history) == 1 and not history[0].has_audio


@pytest.mark.asyncio
async def test_list_marks_viewer_entries(service) -> None:
    await service.submit(RankingSubmission("Taro", 99.0, owner_id="u-1"))
    await service.submit(RankingSubmission("Hana", 98.0, owner_id="u-2"))

    rows = await service.list(viewer_id="u-1")
    assert [row.is_own_entry for row in rows] == [True, False]
    assert await service.list(1) == (await service.list())[:1]
    with pytest.raises(SubmissionValidationError):
        await service.list(0)


@pytest.mark.asyncio
async def test_history_survives_rollover(service, clock) -> None:
    await service.submit(RankingSubmission("Taro", 99.0, owner_id="u-1"))
    clock.advance(days=15)
    await service.seasons.check_rollover()
    await service.submit(RankingSubmission("Taro", 104.0, owner_id="u-1"))

    rows = await service.list()
    assert [row.entry.decibel for row in rows] == [104.0]
    history = await service.history("u-1")
    assert [(row.season_number, row.decibel) for row in history] == [(2, 104.0), (1, 99.0)]


@pytest.mark.asyncio
async def test_rollover_waits_for_an_insert_in_flight(
    storage_factory, audio_store, clock, monkeypatch
) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        scheduler = SeasonScheduler(storage, audio_store, now=clock)
        service = RankingService(storage, audio_store, scheduler, now=clock)
        await scheduler.current_season()
        clock.advance(days=15)

        rollovers: list[asyncio.Task] = []
        original_create = storage.create_entry

        async def create_while_rolling_over(payload):
            rollovers.append(asyncio.create_task(scheduler.check_rollover()))
            await asyncio.sleep(0.01)
            return await original_create(payload)

        monkeypatch.setattr(storage, "create_entry", create_while_rolling_over)

        receipt = await service.submit(RankingSubmission("Taro", 99.0))
        outcome = await rollovers[0]

        assert receipt.season_number == 1
        assert outcome.rolled_over
        assert outcome.cleared_entries == 1
        assert await storage.get_entry(receipt.id) is None

        monkeypatch.undo()
        fresh = await service.submit(RankingSubmission("Hana", 98.0))
        assert fresh.season_number == 2
        assert [row.entry.id for row in await service.list()] == [fresh.id]
    finally:
        await storage.close()


@contextlib.contextmanager
def _history_writes_fail(storage, monkeypatch):
    if isinstance(storage, JsonFileStorage):
        original_write = storage._write

        async def write(name, document):
            if name == "history":
                raise StorageUnavailableError("cannot write history: disk full")
            await original_write(name, document)

        monkeypatch.setattr(storage, "_write", write)
        yield
        return

    def refuse(mapper, connection, target):
        raise OperationalError("INSERT INTO user_history", {}, Exception("disk I/O error"))

    event.listen(UserHistoryRecord, "before_insert", refuse)
    try:
        yield
    finally:
        event.remove(UserHistoryRecord, "before_insert", refuse)


@pytest.mark.asyncio
async def test_partial_persist_leaves_no_entry_or_audio(
    storage_factory, audio_store, clock, monkeypatch
) -> None:
    storage = storage_factory()
    await storage.initialize()
    try:
        scheduler = SeasonScheduler(storage, audio_store, now=clock)
        service = RankingService(storage, audio_store, scheduler, now=clock)
        await scheduler.current_season()

        with _history_writes_fail(storage, monkeypatch):
            with pytest.raises(StorageUnavailableError):
                await service.submit(
                    RankingSubmission(
                        "Taro",
                        101.0,
                        is_audio_public=True,
                        audio=b"bytes",
                        audio_mimetype="audio/webm",
                        owner_id="u-1",
                    )
                )

        assert await service.list() == []
        assert await service.history("u-1") == []
        assert not any(audio_store.root.iterdir())
    finally:
        await storage.close()
