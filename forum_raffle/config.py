"""
Raffle System Configuration
All configurable parameters for the forum raffle bot
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)

# Draw binding
BLOCK_CONFIRMATIONS = 6              # Target block = chain tip + 6 at closing time
TICKET_HEX_DIGITS = 10               # First 10 hex chars (40 bits) of each ticket hash

# Poll intervals (in seconds)
COMMAND_CHECK_INTERVAL = 30
LIFECYCLE_CHECK_INTERVAL = 60

# Outbound request throttling
REQUEST_INTERVAL = 1.0               # Minimum spacing between forum requests
QUEUE_MAX_ATTEMPTS = 5               # 0 = retry forever
QUEUE_BASE_DELAY = 2.0
QUEUE_MAX_DELAY = 300.0

# How the start command carries its parameters: "code" (code block) or "inline"
START_COMMAND_MODE = "code"

# External services
FORUM_URL = "https://bitcointalk.org"
POSTS_API_URL = "https://api.ninjastic.space/posts"
MEMPOOL_API_URL = "https://mempool.space/api"


def _parse_id_list(value):
    """Parse a comma-separated list of user ids ("1, 2,3" -> (1, 2, 3))"""
    if not value:
        return ()
    return tuple(int(part) for part in value.split(',') if part.strip())


def normalize_database_url(url):
    """Heroku/Railway style postgres:// URLs are rejected by SQLAlchemy"""
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass
class RaffleSettings:
    """Runtime settings threaded through the router, validator, scheduler and clients"""
    database_url: str = "sqlite:///raffle.db"
    forum_user: str = ""
    forum_password: str = ""
    captcha_code: str = ""
    bot_user_id: Optional[int] = None
    whitelisted_creators: Tuple[int, ...] = field(default_factory=tuple)
    blacklisted_participants: Tuple[int, ...] = field(default_factory=tuple)
    start_command_mode: str = START_COMMAND_MODE
    forum_url: str = FORUM_URL
    posts_api_url: str = POSTS_API_URL
    mempool_api_url: str = MEMPOOL_API_URL
    block_confirmations: int = BLOCK_CONFIRMATIONS
    command_check_interval: int = COMMAND_CHECK_INTERVAL
    lifecycle_check_interval: int = LIFECYCLE_CHECK_INTERVAL
    request_interval: float = REQUEST_INTERVAL
    queue_max_attempts: int = QUEUE_MAX_ATTEMPTS
    queue_base_delay: float = QUEUE_BASE_DELAY
    queue_max_delay: float = QUEUE_MAX_DELAY

    def __post_init__(self):
        """Validate configuration"""
        if self.start_command_mode not in ("code", "inline"):
            raise ValueError("start_command_mode must be 'code' or 'inline'")
        if self.block_confirmations < 1:
            raise ValueError("block_confirmations must be positive")
        if self.queue_max_attempts < 0:
            raise ValueError("queue_max_attempts cannot be negative")

    def can_create_games(self, user_id: int) -> bool:
        """An empty allow-list lets anyone start a raffle"""
        return not self.whitelisted_creators or user_id in self.whitelisted_creators

    def is_excluded_participant(self, user_id: int) -> bool:
        """The bot's own account and blacklisted users never enter raffles"""
        if self.bot_user_id is not None and user_id == self.bot_user_id:
            return True
        return user_id in self.blacklisted_participants

    @classmethod
    def from_env(cls):
        """
        Load settings from environment variables

        Call load_dotenv() first if settings live in a .env file.

        Returns:
            RaffleSettings: Parsed settings
        """
        bot_user_id = os.getenv("BOT_USER_ID")

        settings = cls(
            database_url=normalize_database_url(os.getenv("DATABASE_URL", "sqlite:///raffle.db")),
            forum_user=os.getenv("FORUM_USER", ""),
            forum_password=os.getenv("FORUM_PASSWORD", ""),
            captcha_code=os.getenv("FORUM_CAPTCHA_CODE", ""),
            bot_user_id=int(bot_user_id) if bot_user_id else None,
            whitelisted_creators=_parse_id_list(os.getenv("WHITELISTED_CREATORS")),
            blacklisted_participants=_parse_id_list(os.getenv("BLACKLISTED_PARTICIPANTS")),
            start_command_mode=os.getenv("START_COMMAND_MODE", START_COMMAND_MODE).lower(),
            forum_url=os.getenv("FORUM_URL", FORUM_URL).rstrip('/'),
            posts_api_url=os.getenv("POSTS_API_URL", POSTS_API_URL),
            mempool_api_url=os.getenv("MEMPOOL_API_URL", MEMPOOL_API_URL).rstrip('/'),
            block_confirmations=int(os.getenv("BLOCK_CONFIRMATIONS", str(BLOCK_CONFIRMATIONS))),
            command_check_interval=int(os.getenv("COMMAND_CHECK_INTERVAL", str(COMMAND_CHECK_INTERVAL))),
            lifecycle_check_interval=int(os.getenv("LIFECYCLE_CHECK_INTERVAL", str(LIFECYCLE_CHECK_INTERVAL))),
            request_interval=float(os.getenv("REQUEST_INTERVAL", str(REQUEST_INTERVAL))),
            queue_max_attempts=int(os.getenv("QUEUE_MAX_ATTEMPTS", str(QUEUE_MAX_ATTEMPTS))),
            queue_base_delay=float(os.getenv("QUEUE_BASE_DELAY", str(QUEUE_BASE_DELAY))),
            queue_max_delay=float(os.getenv("QUEUE_MAX_DELAY", str(QUEUE_MAX_DELAY))),
        )

        if settings.whitelisted_creators:
            logger.info(f"✅ Raffle creation restricted to {len(settings.whitelisted_creators)} user(s)")
        if settings.bot_user_id is None:
            logger.warning("⚠️ BOT_USER_ID not set - bot replies will not be excluded from entries")

        return settings
