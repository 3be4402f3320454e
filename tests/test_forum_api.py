"""
Test Forum API helpers
Topic page scraping, message encoding and posts API records
"""

from datetime import datetime, timezone

import pytest

from core.forum_api import encode_message, parse_topic_page
from forum_raffle.errors import ForumError
from forum_raffle.models import Post

TOPIC_PAGE = """
<html>
<head><title>Guide to running a full node</title></head>
<body>
<table>
  <tr>
    <td class="poster_info">
      <b><a href="https://bitcointalk.org/index.php?action=profile;u=123" title="View the profile of alice">alice</a></b>
    </td>
    <td class="td_headerandpost">
      <div class="smalltext">{date}</div>
      <div class="post">Step one...</div>
      <div class="smalltext"><span>Merited by bob (5), carol (2)</span></div>
    </td>
  </tr>
  <tr>
    <td class="poster_info">
      <b><a href="https://bitcointalk.org/index.php?action=profile;u=456">dave</a></b>
    </td>
    <td class="td_headerandpost">
      <div class="smalltext">January 06, 2024, 10:00:00 AM</div>
      <div class="post">Thanks</div>
    </td>
  </tr>
</table>
</body>
</html>
"""


def test_parse_topic_page():
    topic = parse_topic_page(5248878, TOPIC_PAGE.format(date="January 05, 2024, 03:04:05 PM"))

    assert topic.topic_id == 5248878
    assert topic.author_uid == 123
    assert topic.created_at == datetime(2024, 1, 5, 15, 4, 5, tzinfo=timezone.utc)
    assert topic.title == "Guide to running a full node"
    assert topic.merits == [5, 2]
    assert topic.merit_total == 7


def test_parse_topic_page_today():
    now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
    topic = parse_topic_page(1, TOPIC_PAGE.format(date="<b>Today</b> at 01:02:03 AM"), now=now)

    assert topic.created_at == datetime(2026, 10, 18, 1, 2, 3, tzinfo=timezone.utc)


def test_parse_topic_page_without_posts():
    with pytest.raises(ForumError):
        parse_topic_page(1, "<html><body>The topic or board you are looking for appears to be either missing or off limits to you.</body></html>")


def test_encode_message():
    assert encode_message("plain [b]text[/b]") == "plain [b]text[/b]"
    assert encode_message("sorteio ação <3 & more") == "sorteio a&#231;&#227;o &#60;3 &#38; more"


def test_post_from_api():
    post = Post.from_api({
        'post_id': '63000001',
        'topic_id': 5248878,
        'author': 'alice',
        'author_uid': '123',
        'content': '+entry https://bitcointalk.org/index.php?topic=1',
        'title': 'Re: Raffle',
    })

    assert post.post_id == 63000001
    assert post.author_uid == 123
    assert post.content.startswith('+entry')
