"""
Blockchain Lookup Module
Chain tip height and block hashes from the mempool.space REST API
"""

import asyncio
import logging
import time
from typing import Optional

import aiohttp

from forum_raffle.errors import BlockchainError
from utils.logging_config import log_api_call

logger = logging.getLogger(__name__)


class MempoolAPI:
    """Read-only client for https://mempool.space/api"""

    def __init__(self, base_url: str = "https://mempool.space/api", timeout: int = 10):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_text(self, path: str) -> str:
        session = await self._get_session()
        url = f"{self.base_url}{path}"

        started = time.monotonic()
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                body = await response.text()
                log_api_call(logger, 'mempool', path, response.status, time.monotonic() - started)
                if response.status != 200:
                    raise BlockchainError(f"GET {path} returned HTTP {response.status}: {body[:100]}")
                return body.strip()
        except asyncio.TimeoutError:
            raise BlockchainError(f"GET {path} timed out")
        except aiohttp.ClientError as e:
            raise BlockchainError(f"GET {path} failed: {type(e).__name__}: {e}")

    async def current_height(self) -> int:
        """
        Get the current chain tip height

        Raises:
            BlockchainError: Lookup failed
        """
        body = await self._get_text("/blocks/tip/height")
        try:
            return int(body)
        except ValueError:
            raise BlockchainError(f"Unexpected tip height response: {body[:100]}")

    async def block_hash(self, height: int) -> str:
        """
        Get the hash of the block at a height

        Raises:
            BlockchainError: Block not mined yet or lookup failed
        """
        block_hash = await self._get_text(f"/block-height/{height}")
        if len(block_hash) != 64:
            raise BlockchainError(f"Unexpected block hash for height {height}: {block_hash[:100]}")
        logger.debug(f"Block {height} hash: {block_hash}")
        return block_hash
