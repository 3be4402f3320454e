"""
Shared fixtures for the raffle tests
SQLite file databases plus in-memory forum and blockchain doubles
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine

from forum_raffle import database
from forum_raffle.config import RaffleSettings
from forum_raffle.draw import generate_game_seed
from forum_raffle.errors import BlockchainError, ForumError
from forum_raffle.models import Post, TopicInfo
from forum_raffle.throttle import RequestQueue

BOT_USER_ID = 999
ADMIN_UID = 1

PAST = datetime(2020, 1, 1, tzinfo=timezone.utc)
FUTURE = datetime(2099, 1, 31, tzinfo=timezone.utc)


class FakeForum:
    """Records writes and serves canned topics and posts"""

    def __init__(self):
        self.topics = {}
        self.posts = []
        self.published = []
        self.edits = []
        self.lookups = []
        self.publish_failures = 0
        self._next_post_id = 5000

    def add_topic(self, topic_id, author_uid, created_at=PAST, title='', merits=()):
        self.topics[topic_id] = TopicInfo(
            topic_id=topic_id,
            author_uid=author_uid,
            created_at=created_at,
            title=title or f"Topic {topic_id}",
            merits=list(merits),
        )

    async def fetch_recent_posts(self, since_id=0):
        return [post for post in self.posts if post.post_id > since_id]

    async def publish_post(self, topic, subject, message):
        await asyncio.sleep(0)
        if self.publish_failures:
            self.publish_failures -= 1
            raise ForumError("You have exceeded the post limit")
        self._next_post_id += 1
        self.published.append({
            'post_id': self._next_post_id,
            'topic': topic,
            'subject': subject,
            'message': message,
        })
        return self._next_post_id

    async def edit_post(self, post, topic, subject, message):
        await asyncio.sleep(0)
        self.edits.append({'post_id': post, 'topic': topic, 'subject': subject, 'message': message})
        return post

    async def lookup_topic(self, topic_id):
        self.lookups.append(topic_id)
        await asyncio.sleep(0)
        if topic_id not in self.topics:
            raise ForumError(f"Topic {topic_id} is invalid")
        return self.topics[topic_id]


class FakeChain:
    def __init__(self, height=800000):
        self.height = height
        self.hashes = {}
        self.fail = False

    async def current_height(self):
        if self.fail:
            raise BlockchainError("mempool unavailable")
        return self.height

    async def block_hash(self, height):
        if self.fail or height not in self.hashes:
            raise BlockchainError(f"Block {height} not found")
        return self.hashes[height]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'raffle.db'}", future=True)
    assert database.setup_raffle_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def settings():
    return RaffleSettings(
        database_url="sqlite://",
        bot_user_id=BOT_USER_ID,
        request_interval=0,
        queue_max_attempts=3,
        queue_base_delay=0.01,
        queue_max_delay=0.05,
    )


@pytest.fixture
def queue():
    return RequestQueue(max_attempts=3, base_delay=0.01, max_delay=0.05, interval=0)


@pytest.fixture
def forum():
    return FakeForum()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def make_post():
    counter = {'post_id': 100}

    def _make_post(content, topic_id=10, author='alice', author_uid=2, post_id=None):
        if post_id is None:
            counter['post_id'] += 1
            post_id = counter['post_id']
        return Post(
            post_id=post_id,
            topic_id=topic_id,
            author=author,
            author_uid=author_uid,
            content=content,
        )

    return _make_post


@pytest.fixture
def make_game(engine):
    """Insert a game straight into the database (deadline may be in the past)"""

    def _make_game(topic_id=10, deadline=FUTURE, number_winners=1, game_admin=ADMIN_UID, post_id=4000):
        game = database.insert_game(
            engine,
            game_admin=game_admin,
            topic_id=topic_id,
            deadline=deadline,
            number_winners=number_winners,
            seed=generate_game_seed(1700000000 + topic_id),
        )
        if post_id is not None:
            database.set_game_post(engine, game.game_id, post_id, "raffle post")
        return database.get_game(engine, game.game_id)

    return _make_game


@pytest.fixture
def add_entry(engine):
    """Insert an entry as if it was submitted before any test deadline"""

    def _add_entry(game, topic_id, author, author_uid, post_id=200, now=PAST - timedelta(days=1)):
        return database.insert_entry(
            engine,
            game_id=game.game_id,
            post_id=post_id,
            topic_id=topic_id,
            author=author,
            author_uid=author_uid,
            now=now,
        )

    return _add_entry
