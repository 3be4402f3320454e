"""
Raffle Records
Game and Entry records plus the Post/Topic shapes handed over by the forum client
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class Stage(str, Enum):
    OPEN = 'open'
    CLOSED = 'closed'
    FINALIZED = 'finalized'


def utcnow():
    return datetime.now(timezone.utc)


def parse_timestamp(value):
    """
    Coerce a stored timestamp into an aware UTC datetime

    SQLite hands TIMESTAMP columns back as ISO strings, PostgreSQL as naive
    datetimes. Both are stored in UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _load_json_list(value):
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return list(value)


@dataclass
class Game:
    """One raffle bound to one forum thread"""
    game_id: int
    game_admin: int
    topic_id: int
    deadline: datetime
    number_winners: int
    seed: str
    post_id: Optional[int] = None
    post_content: Optional[str] = None
    block_height: Optional[int] = None
    overview_post_id: Optional[int] = None
    winner_post_id: Optional[int] = None
    tickets_drawn: Optional[List[int]] = None
    winner_entry_ids: Optional[List[int]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_finished(self, now=None):
        return (now or utcnow()) >= self.deadline

    @property
    def finished(self):
        """True once the deadline has passed. Never stored."""
        return self.is_finished()

    @property
    def stage(self):
        if self.winner_post_id is not None:
            return Stage.FINALIZED
        if self.overview_post_id is not None:
            return Stage.CLOSED
        return Stage.OPEN

    @classmethod
    def from_row(cls, row):
        """Build a Game from a raffle_games row mapping"""
        return cls(
            game_id=row['game_id'],
            game_admin=row['game_admin'],
            topic_id=row['topic_id'],
            deadline=parse_timestamp(row['deadline']),
            number_winners=row['number_winners'],
            seed=row['seed'],
            post_id=row['post_id'],
            post_content=row['post_content'],
            block_height=row['block_height'],
            overview_post_id=row['overview_post_id'],
            winner_post_id=row['winner_post_id'],
            tickets_drawn=_load_json_list(row['tickets_drawn']),
            winner_entry_ids=_load_json_list(row['winner_entry_ids']),
            created_at=parse_timestamp(row['created_at']),
            updated_at=parse_timestamp(row['updated_at']),
        )


@dataclass
class Entry:
    """One forum thread submitted by one participant into one game"""
    entry_id: int
    game_id: int
    post_id: int
    topic_id: int
    author: str
    author_uid: int
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            entry_id=row['entry_id'],
            game_id=row['game_id'],
            post_id=row['post_id'],
            topic_id=row['topic_id'],
            author=row['author'],
            author_uid=row['author_uid'],
            created_at=parse_timestamp(row['created_at']),
        )


@dataclass
class Post:
    """A forum post as returned by the posts API"""
    post_id: int
    topic_id: int
    author: str
    author_uid: int
    content: str

    @classmethod
    def from_api(cls, data):
        return cls(
            post_id=int(data['post_id']),
            topic_id=int(data['topic_id']),
            author=data['author'],
            author_uid=int(data['author_uid']),
            content=data.get('content') or '',
        )


@dataclass
class TopicInfo:
    """Metadata of a forum thread, scraped from its first post"""
    topic_id: int
    author_uid: Optional[int]
    created_at: Optional[datetime]
    title: str = ''
    merits: List[int] = field(default_factory=list)

    @property
    def merit_total(self):
        return sum(self.merits)
