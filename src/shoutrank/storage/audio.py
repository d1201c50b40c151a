"""Filesystem storage for uploaded shout recordings."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from uuid import uuid4

from .base import StorageUnavailableError

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "mp4": ".mp4",
    "ogg": ".ogg",
    "mpeg": ".mp3",
    "wav": ".wav",
}


def resolve_audio_root(explicit: Path | None = None) -> Path:
    """Return the absolute audio directory honoring environment overrides."""

    env_root = os.environ.get("SHOUTRANK_AUDIO_ROOT")
    if explicit is not None:
        root_path = explicit
    elif env_root:
        root_path = Path(env_root).expanduser()
    else:
        root_path = Path("uploads")
    return root_path if root_path.is_absolute() else root_path.resolve()


def extension_for(mimetype: str) -> str:
    for marker, suffix in _EXTENSIONS.items():
        if marker in mimetype:
            return suffix
    return ".webm"


class LocalAudioStore:
    """Keep audio attachments as files named by an opaque key."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = resolve_audio_root(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        """Return the file path for ``key``; path components are stripped."""

        return self._root / Path(key).name

    async def save(self, data: bytes, mimetype: str) -> str:
        key = f"{int(time.time() * 1000)}-{uuid4().hex[:9]}{extension_for(mimetype)}"
        destination = self.path_for(key)
        try:
            await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(destination.write_bytes, data)
        except OSError as exc:
            destination.unlink(missing_ok=True)
            raise StorageUnavailableError(f"cannot store audio: {exc}") from exc
        return key

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.path_for(key).unlink, missing_ok=True)
        except OSError:
            logger.warning("Could not remove audio %s", key, exc_info=True)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self.path_for(key).is_file)


__all__ = ["LocalAudioStore", "extension_for", "resolve_audio_root"]
