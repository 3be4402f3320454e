"""
Core modules for the forum raffle bot

Modules:
- forum_api: Forum session (login, posting, editing, topic scraping) and posts API
- blockchain_api: Chain tip height and block hashes from mempool.space
"""

from .forum_api import (
    ForumAPI,
    encode_message,
    parse_topic_page,
)

from .blockchain_api import MempoolAPI

__all__ = [
    # Forum
    'ForumAPI',
    'encode_message',
    'parse_topic_page',
    # Blockchain
    'MempoolAPI',
]
