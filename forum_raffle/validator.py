"""
Entry Validation
Decides whether threads linked in a post may enter a raffle, and registers them
"""

import asyncio
import logging

from . import database
from .models import utcnow

logger = logging.getLogger(__name__)


class EntryValidator:
    """
    Registers entries that pass the raffle rules

    Post-level rules (a failure skips the whole post):
        1. The game exists and its deadline has not passed
        2. The poster is neither the bot itself nor a blacklisted participant

    Link-level rules (a failure silently skips that link):
        3. The thread is not already an entry in any raffle
        4. The thread was started by the poster
        5. The thread was started before the game's deadline
    """

    def __init__(self, engine, forum, settings):
        """
        Args:
            engine: SQLAlchemy database engine
            forum: Client providing lookup_topic(topic_id)
            settings: RaffleSettings
        """
        self.engine = engine
        self.forum = forum
        self.settings = settings

    def accepts_post(self, game, post, now=None):
        """Rules 1-2"""
        if game is None:
            return False
        if game.is_finished(now or utcnow()):
            logger.debug(f"Game #{game.game_id} has finished, ignoring entries in post {post.post_id}")
            return False
        if self.settings.is_excluded_participant(post.author_uid):
            logger.debug(f"Ignoring entries from excluded user {post.author} ({post.author_uid})")
            return False
        return True

    async def register_entry(self, game, topic_id, post):
        """
        Check rules 3-5 for one linked thread and store it as an entry

        Args:
            game: Game the post was made in
            topic_id: Linked thread
            post: Submitting post

        Returns:
            Entry: The new entry, or None if the thread is not eligible
        """
        if database.entry_exists(self.engine, topic_id):
            logger.debug(f"Topic {topic_id} is already an entry")
            return None

        topic = await self.forum.lookup_topic(topic_id)

        if topic.author_uid != post.author_uid:
            logger.debug(f"Topic {topic_id} was not started by {post.author} ({post.author_uid})")
            return None

        if topic.created_at is None or topic.created_at >= game.deadline:
            logger.debug(f"Topic {topic_id} was started after game #{game.game_id} deadline")
            return None

        entry = database.insert_entry(
            self.engine,
            game_id=game.game_id,
            post_id=post.post_id,
            topic_id=topic_id,
            author=post.author,
            author_uid=post.author_uid,
        )
        if entry:
            logger.info(f"🎟️ Entry #{entry.entry_id}: topic {topic_id} by {post.author} in game #{game.game_id}")
        return entry

    async def register_entries(self, game, topic_ids, post):
        """
        Validate and register every linked thread of a post concurrently

        A failing lookup only drops its own link.

        Returns:
            list: Entries created, in link order
        """
        if not self.accepts_post(game, post):
            return []

        unique_topic_ids = list(dict.fromkeys(topic_ids))
        results = await asyncio.gather(
            *(self.register_entry(game, topic_id, post) for topic_id in unique_topic_ids),
            return_exceptions=True,
        )

        entries = []
        for topic_id, result in zip(unique_topic_ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Could not validate topic {topic_id} from post {post.post_id}: {result}")
            elif result is not None:
                entries.append(result)

        return entries
