"""HTTP surface for the ShoutRank service."""
from __future__ import annotations

import logging
from typing import Any

import uvicorn

from ..config import ShoutRankConfig
from .app import create_app


def main(**uvicorn_kwargs: Any) -> None:
    """Run the ShoutRank service using ``uvicorn``.

    Parameters
    ----------
    **uvicorn_kwargs: Any
        Optional keyword arguments forwarded to :func:`uvicorn.run`.
    """

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    settings = ShoutRankConfig.from_env()

    config = {
        "app": "shoutrank.web:create_app",
        "factory": True,
        "host": settings.host,
        "port": settings.port,
        "reload": settings.reload,
    }
    config.update(uvicorn_kwargs)

    uvicorn.run(**config)


__all__ = ["create_app", "main"]
