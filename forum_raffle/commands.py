"""
Forum Commands for Raffle System
Turns forum posts into raffle actions (start, enter, reconfigure)
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from discord.ext import tasks

from . import database
from .draw import generate_game_seed
from .errors import (
    DeadLetterError,
    GameFinishedError,
    GameNotFoundError,
    InvalidCommandError,
    NotGameAdminError,
)
from .messages import BBCodeRenderer
from .models import utcnow
from .validator import EntryValidator

logger = logging.getLogger(__name__)

DATE_PATTERN = r'(\d{4}/\d{2}/\d{2})'

CODE_WINNERS_RE = re.compile(r'(?:vencedores|winners):\s*(\d+)', re.IGNORECASE)
CODE_DEADLINE_RE = re.compile(r'deadline:\s*' + DATE_PATTERN, re.IGNORECASE)


@dataclass(frozen=True)
class Command:
    """
    One entry of the command table

    handler is awaited with (post, matches). Repeatable commands receive every
    occurrence in the post, the others only the first one. The predicate, if
    any, must accept the post before the handler runs.
    """
    name: str
    pattern: re.Pattern
    handler: Callable[..., Awaitable[Any]]
    repeatable: bool = False
    predicate: Optional[Callable[..., bool]] = None


def parse_post_body(content):
    """
    Parse a post's HTML with quoted content removed

    Top-level quotes and quote headers are dropped so that quoting someone's
    command does not run it again.
    """
    soup = BeautifulSoup(content or '', 'html.parser')
    for quote in soup.find_all('div', class_=['quote', 'quoteheader'], recursive=False):
        quote.decompose()
    for line_break in soup.find_all('br'):
        line_break.replace_with('\n')
    return soup


def post_text(content):
    return parse_post_body(content).get_text()


def parse_deadline(value):
    """'2024/01/31' -> 2024-01-31 00:00 UTC"""
    try:
        return datetime.strptime(value, '%Y/%m/%d').replace(tzinfo=timezone.utc)
    except ValueError:
        raise InvalidCommandError(f"Invalid date: {value}")


def parse_winner_count(value):
    try:
        number_winners = int(value)
    except (TypeError, ValueError):
        raise InvalidCommandError(f"Invalid number of winners: {value}")
    if number_winners < 1:
        raise InvalidCommandError("Number of winners must be at least 1")
    return number_winners


class RaffleCommands:
    """Command router: matches posts against the command table and runs handlers"""

    def __init__(self, engine, forum, queue, settings, renderer=None, validator=None):
        """
        Args:
            engine: SQLAlchemy database engine
            forum: Forum client (fetch_recent_posts, publish_post, edit_post, lookup_topic)
            queue: RequestQueue every forum write goes through
            settings: RaffleSettings
            renderer: Post renderer (defaults to BBCodeRenderer)
            validator: EntryValidator (defaults to one built from the above)
        """
        self.engine = engine
        self.forum = forum
        self.queue = queue
        self.settings = settings
        self.renderer = renderer or BBCodeRenderer(settings.forum_url)
        self.validator = validator or EntryValidator(engine, forum, settings)
        self.last_post_id = 0
        self.commands = self._build_commands()

    def _build_commands(self) -> List[Command]:
        forum_host = re.escape(urlparse(self.settings.forum_url).netloc or 'bitcointalk.org')
        topic_link = rf'(?:www\.)?{forum_host}/index\.php\?topic=(\d+)'

        if self.settings.start_command_mode == 'inline':
            start_pattern = re.compile(
                r'\+\s?(?:sorteio|raffle)\s+' + DATE_PATTERN + r'\s+\[(\d+)\]', re.IGNORECASE
            )
        else:
            start_pattern = re.compile(r'\+\s?(?:sorteio|raffle)', re.IGNORECASE)

        return [
            Command(
                name='startGame',
                pattern=start_pattern,
                handler=self.start_game,
                predicate=lambda post: self.settings.can_create_games(post.author_uid),
            ),
            Command(
                name='newGameEntry',
                pattern=re.compile(r'\+\s?(?:entrada|entry)\b[^\n]*?' + topic_link, re.IGNORECASE),
                handler=self.submit_entries,
                repeatable=True,
                predicate=lambda post: not self.settings.is_excluded_participant(post.author_uid),
            ),
            Command(
                name='changeNumberWinners',
                pattern=re.compile(r'\+\s?(?:definir vencedores|set winners)\s+(\d+)', re.IGNORECASE),
                handler=self.set_winner_count,
            ),
            Command(
                name='changeDeadline',
                pattern=re.compile(r'\+\s?(?:definir data|set deadline)\s+' + DATE_PATTERN, re.IGNORECASE),
                handler=self.set_deadline,
            ),
        ]

    # ========================================
    # MATCHING & DISPATCH
    # ========================================

    def match_commands(self, text):
        """
        Match post text against the command table

        Returns:
            list: (Command, [re.Match, ...]) for every command that matched
        """
        matched = []
        for command in self.commands:
            if command.repeatable:
                matches = list(command.pattern.finditer(text))
            else:
                match = command.pattern.search(text)
                matches = [match] if match else []

            if matches:
                matched.append((command, matches))
        return matched

    async def _run_command(self, command, matches, post):
        if command.predicate is not None and not command.predicate(post):
            logger.debug(f"Command \"{command.name}\" not allowed for {post.author} ({post.author_uid})")
            return None

        try:
            return await command.handler(post, matches)
        except Exception as e:
            logger.error(f"MATCH ERROR: \"{command.name}\" post {post.post_id}: {e}")
            return None

    async def handle_post(self, post):
        """Run every command found in one post; a failing command never affects the others"""
        matched = self.match_commands(post_text(post.content))
        if not matched:
            return []

        return await asyncio.gather(
            *(self._run_command(command, matches, post) for command, matches in matched)
        )

    async def process_posts(self, posts):
        """Dispatch a batch of posts concurrently"""
        return await asyncio.gather(*(self.handle_post(post) for post in posts))

    async def check_for_matches(self):
        """
        One intake cycle: fetch posts newer than the last seen and dispatch them

        Returns:
            int: Number of posts processed
        """
        logger.debug(f"Getting posts from {self.last_post_id}")
        posts = await self.forum.fetch_recent_posts(self.last_post_id)
        if not posts:
            return 0

        self.last_post_id = max(self.last_post_id, max(post.post_id for post in posts))
        await self.process_posts(posts)
        return len(posts)

    # ========================================
    # HANDLERS
    # ========================================

    def _start_parameters(self, post, matches):
        if self.settings.start_command_mode == 'inline':
            match = matches[0]
            return parse_deadline(match.group(1)), parse_winner_count(match.group(2))

        code = parse_post_body(post.content).select_one('div.code')
        code_text = code.get_text('\n') if code is not None else ''
        winners_match = CODE_WINNERS_RE.search(code_text)
        deadline_match = CODE_DEADLINE_RE.search(code_text)

        if not winners_match or not deadline_match:
            raise InvalidCommandError("Missing raffle parameters")

        return parse_deadline(deadline_match.group(1)), parse_winner_count(winners_match.group(1))

    async def start_game(self, post, matches):
        """
        Create a raffle in the post's thread and publish the raffle post

        Does nothing if the thread already has a raffle. If the raffle post
        cannot be published the game is removed again, so the start command
        can be re-issued.
        """
        if database.find_game_by_topic(self.engine, post.topic_id):
            logger.debug(f"Game already exists for topic {post.topic_id}")
            return None

        deadline, number_winners = self._start_parameters(post, matches)
        if deadline <= utcnow():
            raise InvalidCommandError("Deadline must be in the future")

        game = database.insert_game(
            self.engine,
            game_admin=post.author_uid,
            topic_id=post.topic_id,
            deadline=deadline,
            number_winners=number_winners,
            seed=generate_game_seed(),
        )
        if game is None:
            return None

        message = self.renderer.open_post(game, [])

        try:
            post_id = await self.queue.add(
                lambda: self.forum.publish_post(
                    topic=game.topic_id,
                    subject=self.renderer.open_subject(game),
                    message=message,
                ),
                name=f"raffle post for game #{game.game_id}",
            )
        except DeadLetterError:
            database.delete_unpublished_game(self.engine, game.game_id)
            logger.warning(f"Raffle post for topic {post.topic_id} failed, game #{game.game_id} discarded")
            raise

        database.set_game_post(self.engine, game.game_id, post_id, message)
        logger.info(f"🎰 Game #{game.game_id} started by {post.author} in topic {post.topic_id} (post {post_id})")
        return database.get_game(self.engine, game.game_id)

    async def submit_entries(self, post, matches):
        """Register every linked thread that passes validation"""
        logger.info(f"Found new entry request {post.post_id} by {post.author}")
        game = database.find_game_by_topic(self.engine, post.topic_id)
        if game is None:
            return []

        topic_ids = [int(match.group(1)) for match in matches]
        entries = await self.validator.register_entries(game, topic_ids, post)

        if entries:
            await self.refresh_post_content(game.game_id)
        return entries

    def _get_admin_game(self, post):
        game = database.find_game_by_topic(self.engine, post.topic_id)
        if game is None:
            raise GameNotFoundError()
        if game.game_admin != post.author_uid:
            raise NotGameAdminError()
        if game.finished:
            raise GameFinishedError()
        return game

    async def set_winner_count(self, post, matches):
        game = self._get_admin_game(post)
        number_winners = parse_winner_count(matches[0].group(1))

        if not database.update_game_settings(self.engine, game.game_id, post.author_uid, number_winners=number_winners):
            raise GameFinishedError()

        logger.info(f"Game #{game.game_id}: number of winners set to {number_winners}")
        return await self.refresh_post_content(game.game_id)

    async def set_deadline(self, post, matches):
        game = self._get_admin_game(post)
        deadline = parse_deadline(matches[0].group(1))

        if not database.update_game_settings(self.engine, game.game_id, post.author_uid, deadline=deadline):
            raise GameFinishedError()

        logger.info(f"Game #{game.game_id}: deadline set to {deadline.isoformat()}")
        return await self.refresh_post_content(game.game_id)

    async def refresh_post_content(self, game_id):
        """Re-render the raffle post and edit it in place"""
        game = database.get_game(self.engine, game_id)
        if game is None:
            raise GameNotFoundError()
        if game.post_id is None:
            logger.warning(f"Game #{game_id} has no raffle post to refresh")
            return None

        message = self.renderer.open_post(game, database.list_entries(self.engine, game_id))

        post_id = await self.queue.add(
            lambda: self.forum.edit_post(
                post=game.post_id,
                topic=game.topic_id,
                subject=self.renderer.edit_subject(game),
                message=message,
            ),
            name=f"raffle post refresh for game #{game_id}",
        )

        database.set_game_post(self.engine, game_id, game.post_id, message)
        return post_id


def setup_raffle_commands(engine, forum, queue, settings, renderer=None):
    """
    Start the forum post intake as a background task

    Args:
        engine: SQLAlchemy database engine
        forum: Forum client
        queue: Shared RequestQueue
        settings: RaffleSettings

    Returns:
        tuple: (RaffleCommands, the running tasks.Loop)
    """
    commands = RaffleCommands(
        engine=engine,
        forum=forum,
        queue=queue,
        settings=settings,
        renderer=renderer,
    )

    @tasks.loop(seconds=settings.command_check_interval)
    async def check_forum_commands():
        """Fetch new forum posts and run the raffle commands found in them"""
        try:
            processed = await commands.check_for_matches()
            if processed:
                logger.debug(f"Processed {processed} posts (last post id {commands.last_post_id})")
        except Exception as e:
            logger.error(f"Error in forum command task: {e}")

    check_forum_commands.start()
    logger.info(f"✅ Forum command task started (every {settings.command_check_interval}s)")

    return commands, check_forum_commands
