"""
Raffle Lifecycle Scheduler
Advances every raffle Open -> Closed -> Finalized on a fixed poll interval
"""

import asyncio
import logging

from discord.ext import tasks

from . import database
from .draw import draw_winners
from .errors import LifecycleError
from .messages import BBCodeRenderer
from .models import Stage, utcnow

logger = logging.getLogger(__name__)


class RaffleScheduler:
    """
    Per-game state machine

    Open:      no closing announcement yet
    Closed:    closing announcement posted, target block chosen
    Finalized: result post published (terminal)

    One poll applies at most one transition per game.
    """

    def __init__(self, engine, forum, chain, queue, settings, renderer=None):
        """
        Initialize raffle scheduler

        Args:
            engine: SQLAlchemy database engine
            forum: Forum client (publish_post, lookup_topic)
            chain: Blockchain client (current_height, block_hash)
            queue: RequestQueue every forum write goes through
            settings: RaffleSettings
            renderer: Post renderer (defaults to BBCodeRenderer)
        """
        self.engine = engine
        self.forum = forum
        self.chain = chain
        self.queue = queue
        self.settings = settings
        self.renderer = renderer or BBCodeRenderer(settings.forum_url)

        logger.info(f"📅 Raffle scheduler initialized ({settings.block_confirmations} block confirmations)")

    async def close_game(self, game):
        """
        Open -> Closed: choose the target block and announce it

        Raises:
            LifecycleError: The closing announcement already exists
            BlockchainError: Tip height lookup failed
        """
        if game.overview_post_id is not None:
            raise LifecycleError(f"Game #{game.game_id} already has an overview post")

        tip_height = await self.chain.current_height()
        block_height = tip_height + self.settings.block_confirmations

        entries = database.list_entries(self.engine, game.game_id)
        message = self.renderer.closed_post(game, entries, block_height)

        overview_post_id = await self.queue.add(
            lambda: self.forum.publish_post(
                topic=game.topic_id,
                subject=self.renderer.closed_subject(game),
                message=message,
            ),
            name=f"closing post for game #{game.game_id}",
        )

        if not database.close_game(self.engine, game.game_id, block_height, overview_post_id):
            logger.warning(f"Game #{game.game_id} was closed concurrently, post {overview_post_id} not recorded")
            return None

        logger.info(f"🔒 Game #{game.game_id} closed with {len(entries)} entries, target block {block_height}")
        return database.get_game(self.engine, game.game_id)

    async def most_merited_topic(self, entries):
        """
        Find the entry topic with the most merits

        Lookups that fail are ignored.

        Returns:
            tuple: (TopicInfo, Entry) or None if no topic could be looked up
        """
        if not entries:
            return None

        results = await asyncio.gather(
            *(self.forum.lookup_topic(entry.topic_id) for entry in entries),
            return_exceptions=True,
        )

        top = None
        for entry, topic in zip(entries, results):
            if isinstance(topic, Exception):
                logger.debug(f"Merit lookup failed for topic {entry.topic_id}: {topic}")
                continue
            if top is None or topic.merit_total > top[0].merit_total:
                top = (topic, entry)

        return top

    async def finalize_game(self, game):
        """
        Closed -> Finalized: draw with the target block's hash and publish the result

        Returns None without changes while the target block is not mined.

        Raises:
            LifecycleError: No target block was chosen
            BlockchainError: Height or hash lookup failed
        """
        if game.block_height is None:
            raise LifecycleError(f"Game #{game.game_id} has no target block")

        tip_height = await self.chain.current_height()
        if tip_height < game.block_height:
            logger.debug(f"Game #{game.game_id} waiting for block {game.block_height} (tip {tip_height})")
            return None

        block_hash = await self.chain.block_hash(game.block_height)

        entries = database.list_entries(self.engine, game.game_id)
        draw = draw_winners(game.seed, block_hash, entries, game.number_winners)
        top_topic = await self.most_merited_topic(entries)
        message = self.renderer.result_post(game, entries, draw, top_topic)

        winner_post_id = await self.queue.add(
            lambda: self.forum.publish_post(
                topic=game.topic_id,
                subject=self.renderer.result_subject(game),
                message=message,
            ),
            name=f"result post for game #{game.game_id}",
        )

        if not database.finalize_game(
            self.engine,
            game.game_id,
            winner_post_id,
            draw.tickets_drawn,
            draw.winner_entry_ids,
        ):
            logger.warning(f"Game #{game.game_id} was finalized concurrently, post {winner_post_id} not recorded")
            return None

        logger.info(f"🎉 Game #{game.game_id} finalized: {', '.join(w.author for w in draw.winners) or 'no winners'}")
        return database.get_game(self.engine, game.game_id)

    async def check_game(self, game, now=None):
        """
        Apply the transition due for one game, if any

        Returns:
            Game: Updated game, or None if nothing changed
        """
        stage = game.stage

        if stage == Stage.OPEN:
            if not game.is_finished(now or utcnow()):
                return None
            return await self.close_game(game)

        if stage == Stage.CLOSED:
            return await self.finalize_game(game)

        return None

    async def _safe_check(self, game):
        try:
            return await self.check_game(game)
        except Exception as e:
            logger.error(f"Failed to advance game #{game.game_id}: {e}")
            return None

    async def check_games(self):
        """
        One lifecycle cycle over every non-finalized game, concurrently

        Returns:
            list: Games that changed stage
        """
        games = database.list_games(self.engine, unfinalized_only=True)
        if not games:
            return []

        results = await asyncio.gather(*(self._safe_check(game) for game in games))
        return [game for game in results if game is not None]


def setup_raffle_scheduler(engine, forum, chain, queue, settings, renderer=None):
    """
    Start the lifecycle poller as a background task

    Args:
        engine: SQLAlchemy database engine
        forum: Forum client
        chain: Blockchain client
        queue: Shared RequestQueue
        settings: RaffleSettings

    Returns:
        tuple: (RaffleScheduler, the running tasks.Loop)
    """
    scheduler = RaffleScheduler(
        engine=engine,
        forum=forum,
        chain=chain,
        queue=queue,
        settings=settings,
        renderer=renderer,
    )

    @tasks.loop(seconds=settings.lifecycle_check_interval)
    async def check_raffle_lifecycle():
        """Close raffles past their deadline and draw raffles whose block is mined"""
        try:
            advanced = await scheduler.check_games()
            for game in advanced:
                logger.info(f"📊 Game #{game.game_id} is now {game.stage.value}")
        except Exception as e:
            logger.error(f"Error in raffle lifecycle task: {e}")

    check_raffle_lifecycle.start()
    logger.info(f"✅ Raffle lifecycle task started (every {settings.lifecycle_check_interval}s)")

    return scheduler, check_raffle_lifecycle
