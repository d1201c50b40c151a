"""FastAPI application factory for the ShoutRank leaderboard."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import FileResponse, JSONResponse

from ..config import ShoutRankConfig
from ..ranking import (
    EntryNotFoundError,
    EntryPermissionError,
    RankingService,
    RankingSubmission,
    SubmissionValidationError,
)
from ..ranks import RANK_TIERS
from ..seasons import SeasonScheduler
from ..storage import (
    JsonFileStorage,
    LeaderboardStorage,
    LocalAudioStore,
    SqlLeaderboardStorage,
    StorageUnavailableError,
)
from .schemas import (
    DeleteResponse,
    HistoryRead,
    LeaderboardRowRead,
    SeasonRead,
    SubmissionRead,
    TierRead,
)

logger = logging.getLogger(__name__)


def build_storage(config: ShoutRankConfig) -> LeaderboardStorage:
    """Return the storage backend selected by ``config``."""

    if config.storage_backend == "file":
        return JsonFileStorage(config.data_dir)
    return SqlLeaderboardStorage(db_url=config.db_url)


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str | None:
    """Identity forwarded by the upstream authentication layer, if any."""

    if x_user_id is None:
        return None
    trimmed = x_user_id.strip()
    return trimmed or None


def require_user(user_id: Optional[str] = Depends(current_user)) -> str:
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Login required",
        )
    return user_id


def create_app(
    config: ShoutRankConfig | None = None,
    *,
    storage: LeaderboardStorage | None = None,
    audio_store: LocalAudioStore | None = None,
    now: Callable[[], datetime] | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Settings; read from the environment when omitted.
    storage, audio_store:
        Optional backends, primarily used for injecting test doubles.
    now:
        Clock override shared by the scheduler and the ranking service.

    Returns
    -------
    FastAPI
        Configured app instance.
    """

    settings = config or ShoutRankConfig.from_env()
    backend = storage or build_storage(settings)
    audio = audio_store or LocalAudioStore(settings.audio_root)
    scheduler = SeasonScheduler(
        backend,
        audio,
        season_length=settings.season_length,
        check_interval=settings.rollover_check_interval,
        now=now,
    )
    service = RankingService(
        backend,
        audio,
        scheduler,
        max_audio_bytes=settings.max_audio_bytes,
        now=now,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await backend.initialize()
        await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            await backend.close()

    app = FastAPI(title="ShoutRank API", lifespan=lifespan)
    app.state.ranking_service = service
    app.state.season_scheduler = scheduler

    @app.exception_handler(StorageUnavailableError)
    async def storage_unavailable(
        request: Request, exc: StorageUnavailableError
    ) -> JSONResponse:
        logger.error("Storage unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Storage temporarily unavailable, please retry"},
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        """Return a simple health status payload."""

        return {"status": "ok"}

    @app.get("/api/season")
    async def get_season() -> SeasonRead:
        """Return the current season window."""

        return SeasonRead.from_season(await scheduler.current_season())

    @app.get("/api/ranks")
    def list_ranks() -> list[TierRead]:
        """Return the tier table from the top tier down."""

        return [TierRead.from_tier(tier) for tier in RANK_TIERS]

    @app.get("/api/rankings")
    async def list_rankings(
        limit: int = Query(default=100, ge=1, le=1000),
        user_id: Optional[str] = Depends(current_user),
    ) -> list[LeaderboardRowRead]:
        """List the current season's leaderboard, loudest first."""

        rows = await service.list(limit, viewer_id=user_id)
        return [LeaderboardRowRead.from_row(row) for row in rows]

    @app.post("/api/rankings", status_code=status.HTTP_201_CREATED)
    async def submit_ranking(
        display_name: str = Form(default="", alias="displayName"),
        decibel_value: str = Form(default="", alias="decibelValue"),
        is_audio_public: bool = Form(default=False, alias="isAudioPublic"),
        audio: Optional[UploadFile] = File(default=None),
        user_id: Optional[str] = Depends(current_user),
    ) -> SubmissionRead:
        """Record a measured score on the leaderboard."""

        data: bytes | None = None
        mimetype: str | None = None
        if audio is not None:
            data = await audio.read()
            mimetype = audio.content_type

        try:
            receipt = await service.submit(
                RankingSubmission(
                    display_name=display_name,
                    decibel=decibel_value,
                    is_audio_public=is_audio_public,
                    audio=data,
                    audio_mimetype=mimetype,
                    owner_id=user_id,
                )
            )
        except SubmissionValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(exc),
            ) from exc

        return SubmissionRead.from_receipt(receipt)

    @app.delete("/api/rankings/{entry_id}")
    async def delete_ranking(
        entry_id: int, user_id: str = Depends(require_user)
    ) -> DeleteResponse:
        """Delete one of the caller's own entries."""

        try:
            await service.delete(entry_id, user_id)
        except EntryNotFoundError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Entry not found",
            ) from exc
        except EntryPermissionError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only your own entries can be deleted",
            ) from exc
        return DeleteResponse(deleted=True)

    @app.get("/api/users/me/history")
    async def my_history(
        limit: int = Query(default=50, ge=1, le=500),
        user_id: str = Depends(require_user),
    ) -> list[HistoryRead]:
        """Return the caller's personal records across all seasons."""

        rows = await service.history(user_id, limit)
        return [HistoryRead.from_history(row) for row in rows]

    @app.get("/api/audio/{key}")
    async def get_audio(key: str) -> FileResponse:
        """Stream a public recording attached to a leaderboard or history row."""

        try:
            path, mimetype = await service.audio(key)
        except EntryNotFoundError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Audio not found",
            ) from exc
        return FileResponse(
            path,
            media_type=mimetype,
            headers={"Cache-Control": "public, max-age=3600"},
        )

    return app
