"""
Forum API Integration Module
Handles login, posting, editing and topic lookups on an SMF forum (bitcointalk.org)
and fetching recent posts from the ninjastic.space posts API
"""

import asyncio
import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import aiohttp
from bs4 import BeautifulSoup

from forum_raffle.errors import AuthenticationError, ForumError
from forum_raffle.models import Post, TopicInfo
from utils.logging_config import log_api_call

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36"

TOPIC_DATE_FORMAT = "%B %d, %Y, %I:%M:%S %p"

AUTHOR_UID_RE = re.compile(r';u=(\d+)')
SESC_RE = re.compile(r'sesc=([0-9a-f]+)')
POST_ID_RE = re.compile(r'#msg(\d+)')
SUBJECT_ID_RE = re.compile(r'subject_(\d+)')
MERIT_RE = re.compile(r'\((\d+)\)')
ENTITY_RE = re.compile(r'[\u00A0-\u9999<>&]')


def encode_message(raw):
    """Escape non-latin characters and markup-sensitive symbols as HTML entities"""
    return ENTITY_RE.sub(lambda match: f"&#{ord(match.group(0))};", raw)


def parse_topic_page(topic_id, html, now=None):
    """
    Extract author, creation time, title and merits of a topic's first post

    Args:
        topic_id: Forum thread id
        html: Topic page HTML
        now: Reference time for "Today at" dates

    Returns:
        TopicInfo: Parsed topic metadata

    Raises:
        ForumError: The page has no posts
    """
    soup = BeautifulSoup(html, 'html.parser')
    poster_info = soup.select_one('td.poster_info')
    if poster_info is None:
        raise ForumError(f"Topic {topic_id} is invalid")

    author_uid = None
    author_anchor = poster_info.select_one('b > a')
    if author_anchor is not None:
        match = AUTHOR_UID_RE.search(author_anchor.get('href', ''))
        if match:
            author_uid = int(match.group(1))

    created_at = None
    header = soup.select_one('td.td_headerandpost')
    if header is not None:
        date_div = header.select_one('div.smalltext')
        if date_div is not None:
            for edited in date_div.select('span.editplain'):
                edited.decompose()
            date_text = date_div.get_text(' ', strip=True)
            today = (now or datetime.now(timezone.utc)).strftime('%B %d, %Y,')
            date_text = date_text.replace('Today at', today)
            try:
                created_at = datetime.strptime(date_text, TOPIC_DATE_FORMAT).replace(tzinfo=timezone.utc)
            except ValueError:
                logger.warning(f"Could not parse topic {topic_id} date: {date_text!r}")

    title = ''
    if soup.title is not None:
        title = soup.title.get_text(strip=True)

    merits = []
    first_post = poster_info.find_parent('tr')
    if first_post is not None:
        for merit_span in first_post.find_all(string=re.compile('Merited by')):
            merits = [int(amount) for amount in MERIT_RE.findall(merit_span.parent.get_text())]
            break

    return TopicInfo(
        topic_id=topic_id,
        author_uid=author_uid,
        created_at=created_at,
        title=title,
        merits=merits,
    )


class ForumAPI:
    """Authenticated forum session with throttled page requests"""

    def __init__(self, settings):
        self.settings = settings
        self.base_url = settings.forum_url.rstrip('/')
        self.interval = settings.request_interval
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session (the cookie jar keeps the login)"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={'User-Agent': USER_AGENT},
                timeout=aiohttp.ClientTimeout(total=30),
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, method, path, **kwargs):
        """One forum request at a time, spaced by the configured interval"""
        session = await self._get_session()

        async with self._lock:
            wait = self._last_request + self.interval - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)

            started = time.monotonic()
            try:
                async with session.request(method, f"{self.base_url}{path}", **kwargs) as response:
                    body = await response.text(errors='replace')
                    log_api_call(logger, 'forum', f"{method} {path}", response.status, time.monotonic() - started)
                    return response.status, str(response.url), body
            except aiohttp.ClientError as e:
                raise ForumError(f"{method} {path} failed: {type(e).__name__}: {e}")
            except asyncio.TimeoutError:
                raise ForumError(f"{method} {path} timed out")
            finally:
                self._last_request = time.monotonic()

    # -------------------------
    # Session
    # -------------------------

    async def authenticate(self):
        """
        Log into the forum

        Raises:
            AuthenticationError: The forum did not hand out session cookies
        """
        if not self.settings.forum_user or not self.settings.forum_password:
            raise AuthenticationError("FORUM_USER and FORUM_PASSWORD must be set")

        form = aiohttp.FormData()
        form.add_field('user', self.settings.forum_user)
        form.add_field('passwrd', self.settings.forum_password)
        form.add_field('cookieneverexp', 'on')
        form.add_field('hash_passwrd', '')

        path = f"/index.php?action=login2;ccode={self.settings.captcha_code}"
        try:
            session = await self._get_session()
            async with session.post(f"{self.base_url}{path}", data=form, allow_redirects=False) as response:
                cookies = response.cookies
        except aiohttp.ClientError as e:
            raise AuthenticationError(f"Login request failed: {e}")

        if not cookies:
            raise AuthenticationError()

        logger.info(f"✅ Logged into {self.base_url} as {self.settings.forum_user}")

    async def _get_sesc(self):
        """Session check code required by every posting form"""
        status, _, body = await self._request('GET', '/index.php?action=profile')
        if status != 200:
            raise ForumError(f"Profile page returned HTTP {status}")

        soup = BeautifulSoup(body, 'html.parser')
        logout = soup.select_one('a[href*="action=logout;sesc="]')
        match = SESC_RE.search(logout.get('href', '')) if logout else None
        if not match:
            raise ForumError("Missing session code (not logged in?)")
        return match.group(1)

    # -------------------------
    # Posts
    # -------------------------

    async def fetch_recent_posts(self, since_id=0) -> List[Post]:
        """
        Get posts newer than since_id from the posts API (newest first)

        Args:
            since_id: Highest post id already processed

        Returns:
            list: Post records
        """
        params = {
            'after_date': (datetime.now(timezone.utc) - timedelta(days=1)).isoformat(),
            'after': str(since_id),
        }
        session = await self._get_session()

        try:
            async with session.get(self.settings.posts_api_url, params=params) as response:
                if response.status != 200:
                    raise ForumError(f"Posts API returned HTTP {response.status}")
                data = await response.json()
        except aiohttp.ClientError as e:
            raise ForumError(f"Posts API request failed: {e}")

        posts = [Post.from_api(item) for item in data.get('data', {}).get('posts', [])]
        logger.debug(f"Fetched {len(posts)} posts after {since_id}")
        return posts

    async def publish_post(self, topic, subject, message):
        """
        Reply to a topic

        Returns:
            int: Id of the created post

        Raises:
            ForumError: The post could not be created
        """
        form = aiohttp.FormData()
        form.add_field('topic', str(topic))
        form.add_field('icon', 'xx')
        form.add_field('subject', subject)
        form.add_field('message', encode_message(message))
        form.add_field('sc', await self._get_sesc())

        logger.info(f"Creating post in topic {topic}")
        status, _, body = await self._request('POST', '/index.php?action=post2', data=form)

        soup = BeautifulSoup(body, 'html.parser')
        subjects = soup.select('div[id^=subject_]')
        match = SUBJECT_ID_RE.search(subjects[-1].get('id', '')) if subjects else None
        if status != 200 or not match:
            raise ForumError(f"Post could not be created in topic {topic} (HTTP {status})")

        post_id = int(match.group(1))
        logger.info(f"✅ Created post {post_id}")
        return post_id

    async def edit_post(self, post, topic, subject, message):
        """
        Replace the content of one of the bot's posts

        Returns:
            int: Id of the edited post

        Raises:
            ForumError: The edit was rejected
        """
        form = aiohttp.FormData()
        form.add_field('topic', str(topic))
        form.add_field('icon', 'xx')
        form.add_field('subject', subject)
        form.add_field('message', encode_message(message))
        form.add_field('goback', '1')
        form.add_field('sc', await self._get_sesc())

        logger.info(f"Editing post {post}")
        status, url, _ = await self._request('POST', f"/index.php?action=post2;msg={post}", data=form)
        if status != 200:
            raise ForumError(f"Post {post} could not be edited (HTTP {status})")

        match = POST_ID_RE.search(url)
        post_id = int(match.group(1)) if match else int(post)
        logger.info(f"✅ Edited post {post_id}")
        return post_id

    # -------------------------
    # Topics
    # -------------------------

    async def lookup_topic(self, topic_id) -> TopicInfo:
        """
        Get author, creation time, title and merits of a topic

        Raises:
            ForumError: Request failed or the topic does not exist
        """
        status, _, body = await self._request('GET', f"/index.php?topic={topic_id}")
        if status != 200 or not body:
            raise ForumError(f"Topic {topic_id} request failed (HTTP {status})")
        return parse_topic_page(topic_id, body)
