"""Shared pytest fixtures for storage, service and API tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable

import numpy as np
import pytest
from fastapi.testclient import TestClient

from shoutrank.config import ShoutRankConfig
from shoutrank.storage import (
    JsonFileStorage,
    LeaderboardStorage,
    LocalAudioStore,
    SqlLeaderboardStorage,
)
from shoutrank.web import create_app


class Clock:
    """Manually advanced clock injected wherever ``now`` is accepted."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class ConstantSource:
    """Audio source emitting a steady amplitude."""

    def __init__(self, amplitude: float = 0.1, *, fail_with: Exception | None = None) -> None:
        self.amplitude = amplitude
        self.fail_with = fail_with
        self.opened = False
        self.closed = False
        self.frames_read = 0

    def open(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.opened = True

    def read_frame(self, size: int) -> np.ndarray:
        self.frames_read += 1
        return np.full(size, self.amplitude, dtype=np.float32)

    def close(self) -> None:
        self.closed = True


class FakeRecorder:
    """Raw audio recorder returning fixed bytes."""

    mimetype = "audio/webm"

    def __init__(self, payload: bytes = b"RIFF-shout") -> None:
        self.payload = payload
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> bytes:
        self.stopped = True
        return self.payload


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture(params=["sql", "file"])
def storage_factory(
    request: pytest.FixtureRequest, tmp_path: Path
) -> Callable[[], LeaderboardStorage]:
    """Build an uninitialised storage of each backend kind."""

    def factory() -> LeaderboardStorage:
        if request.param == "sql":
            return SqlLeaderboardStorage(db_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
        return JsonFileStorage(tmp_path / "data")

    return factory


@pytest.fixture()
def audio_store(tmp_path: Path) -> LocalAudioStore:
    return LocalAudioStore(tmp_path / "audio")


@pytest.fixture()
def client(tmp_path: Path, clock: Clock) -> TestClient:
    """Provide a TestClient backed by a fresh app instance for each test."""

    config = ShoutRankConfig(
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        audio_root=tmp_path / "uploads",
    )
    app = create_app(config, now=clock)
    with TestClient(app) as test_client:
        yield test_client
