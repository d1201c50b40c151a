"""Runtime configuration read from ``SHOUTRANK_*`` environment variables."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Literal

from .db.session import DEFAULT_DB_URL, resolve_db_url
from .ranking.service import MAX_AUDIO_BYTES
from .seasons import CHECK_INTERVAL, SEASON_LENGTH

LOG = logging.getLogger(__name__)

StorageBackend = Literal["sql", "file"]


@dataclass(slots=True)
class ShoutRankConfig:
    """Settings shared by the web app, storage and season scheduler."""

    db_url: str = DEFAULT_DB_URL
    storage_backend: StorageBackend = "sql"
    data_dir: Path | None = None
    audio_root: Path | None = None
    season_length: timedelta = SEASON_LENGTH
    rollover_check_interval: float = CHECK_INTERVAL
    max_audio_bytes: int = MAX_AUDIO_BYTES
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    @classmethod
    def from_env(cls) -> "ShoutRankConfig":
        """Build a config instance from environment overrides."""

        def _bool(name: str, default: bool) -> bool:
            raw = os.environ.get(name)
            if raw is None:
                return default
            return raw.strip().lower() in {"1", "true", "yes", "on"}

        def _float(name: str, default: float) -> float:
            raw = os.environ.get(name)
            if raw is None:
                return default
            try:
                value = float(raw)
            except ValueError:
                LOG.warning("Ignoring non-numeric %s=%r", name, raw)
                return default
            if not math.isfinite(value) or value <= 0:
                LOG.warning("Ignoring out-of-range %s=%r", name, raw)
                return default
            return value

        def _int(name: str, default: int) -> int:
            raw = os.environ.get(name)
            if raw is None:
                return default
            try:
                value = int(raw)
            except ValueError:
                LOG.warning("Ignoring non-integer %s=%r", name, raw)
                return default
            if value <= 0:
                LOG.warning("Ignoring out-of-range %s=%r", name, raw)
                return default
            return value

        def _path(name: str) -> Path | None:
            raw = os.environ.get(name)
            return Path(raw).expanduser() if raw else None

        backend = os.environ.get("SHOUTRANK_STORAGE_BACKEND", "sql").strip().lower()
        if backend not in {"sql", "file"}:
            LOG.warning("Unknown storage backend %r; falling back to sql", backend)
            backend = "sql"

        season_days = _float("SHOUTRANK_SEASON_LENGTH_DAYS", SEASON_LENGTH.days)

        return cls(
            db_url=resolve_db_url(None),
            storage_backend=backend,  # type: ignore[arg-type]
            data_dir=_path("SHOUTRANK_DATA_DIR"),
            audio_root=_path("SHOUTRANK_AUDIO_ROOT"),
            season_length=timedelta(days=season_days),
            rollover_check_interval=_float("SHOUTRANK_ROLLOVER_CHECK_SEC", CHECK_INTERVAL),
            max_audio_bytes=_int("SHOUTRANK_MAX_AUDIO_BYTES", MAX_AUDIO_BYTES),
            host=os.environ.get("SHOUTRANK_HOST", "0.0.0.0"),
            port=_int("SHOUTRANK_PORT", 8000),
            reload=_bool("SHOUTRANK_RELOAD", False),
        )


__all__ = ["ShoutRankConfig", "StorageBackend"]
