"""
Forum Raffle Bot
Polls the forum for raffle commands and drives every raffle to its draw
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv
from sqlalchemy import create_engine

from core import ForumAPI, MempoolAPI
from forum_raffle import (
    RaffleSettings,
    RequestQueue,
    setup_raffle_commands,
    setup_raffle_database,
    setup_raffle_scheduler,
    verify_raffle_schema,
)
from forum_raffle.errors import AuthenticationError
from utils.logging_config import log_error, setup_logging

logger = logging.getLogger('forum_raffle_bot')


# -------------------------
# Database setup
# -------------------------
def create_database_engine(database_url):
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,     # Detect disconnections
        pool_recycle=1800,      # Recycle connections after 30 minutes
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
        } if database_url.startswith('postgresql') else {}
    )


# -------------------------
# Run bot
# -------------------------
async def run_bot(settings):
    engine = create_database_engine(settings.database_url)

    if not setup_raffle_database(engine):
        raise SystemExit("❌ Could not create the raffle tables")

    missing = [table for table, ok in verify_raffle_schema(engine).items() if not ok]
    if missing:
        raise SystemExit(f"❌ Missing raffle tables: {', '.join(missing)}")

    forum = ForumAPI(settings)
    chain = MempoolAPI(settings.mempool_api_url)

    try:
        await forum.authenticate()
    except AuthenticationError as e:
        log_error(logger, e, "Forum login failed")
        await forum.close()
        sys.exit(1)

    queue = RequestQueue.from_settings(settings)

    commands, command_loop = setup_raffle_commands(engine, forum, queue, settings)
    _, lifecycle_loop = setup_raffle_scheduler(engine, forum, chain, queue, settings, renderer=commands.renderer)

    logger.info("🚀 Forum raffle bot running")
    try:
        await asyncio.Event().wait()
    finally:
        command_loop.cancel()
        lifecycle_loop.cancel()
        await forum.close()
        await chain.close()
        engine.dispose()


def main():
    load_dotenv()
    setup_logging('forum_raffle_bot')

    try:
        settings = RaffleSettings.from_env()
    except ValueError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    try:
        asyncio.run(run_bot(settings))
    except KeyboardInterrupt:
        logger.info("👋 Forum raffle bot stopped")


if __name__ == "__main__":
    main()
