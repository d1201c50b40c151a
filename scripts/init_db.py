"""Prepare a leaderboard database: apply migrations and open the first season."""

from __future__ import annotations

import argparse
import asyncio
import logging

from shoutrank.db import current_revision, resolve_db_url
from shoutrank.seasons import SeasonScheduler
from shoutrank.storage import SqlLeaderboardStorage

logger = logging.getLogger("shoutrank.init_db")


async def prepare(db_url: str | None, *, open_season: bool) -> None:
    storage = SqlLeaderboardStorage(db_url=resolve_db_url(db_url))
    async with storage:
        revision = await current_revision(storage.engine)
        logger.info("Database %s migrated to %s", storage.engine.url.database, revision)
        if open_season:
            season = await SeasonScheduler(storage).current_season()
            logger.info(
                "Current season %d resets at %s",
                season.season_number,
                season.next_reset_at.isoformat(),
            )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--db-url", help="defaults to SHOUTRANK_DB_URL")
    parser.add_argument(
        "--skip-season",
        action="store_true",
        help="only migrate; leave season creation to the first request",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    asyncio.run(prepare(args.db_url, open_season=not args.skip_season))


if __name__ == "__main__":
    main()
