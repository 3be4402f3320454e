"""
Test Raffle Post Rendering
"""

from datetime import datetime, timezone

from forum_raffle.draw import draw_winners
from forum_raffle.messages import BBCodeRenderer
from forum_raffle.models import Entry, Game, TopicInfo


def make_game(**overrides):
    fields = dict(
        game_id=7,
        game_admin=1,
        topic_id=10,
        deadline=datetime(2099, 1, 31, tzinfo=timezone.utc),
        number_winners=2,
        seed="a" * 64,
        block_height=800006,
    )
    fields.update(overrides)
    return Game(**fields)


def make_entry(entry_id, topic_id, author, author_uid):
    return Entry(entry_id=entry_id, game_id=7, post_id=100, topic_id=topic_id, author=author, author_uid=author_uid)


ENTRIES = [
    make_entry(1, 500, 'alice', 2),
    make_entry(2, 501, 'bob', 3),
    make_entry(3, 502, 'alice', 2),
]


def test_open_post():
    renderer = BBCodeRenderer()
    message = renderer.open_post(make_game(), ENTRIES)

    assert "Raffle #7" in message
    assert "31/01/2099 00:00:00 UTC" in message
    assert "Number of winners: 2" in message
    assert f"Seed: {'a' * 64}" in message
    assert "[url=https://bitcointalk.org/index.php?topic=502]2[/url]" in message
    assert "[tr][td][b]bob[/b][/td][td]1[/td]" in message


def test_open_post_without_entries():
    message = BBCodeRenderer().open_post(make_game(), [])

    assert "[tr][td]...[/td][/tr]" in message


def test_closed_post_ticket_ranges():
    message = BBCodeRenderer().closed_post(make_game(), ENTRIES, 800006)

    assert "[b]800006[/b]" in message
    assert "[tr][td][b]alice[/b][/td][td]1 ~ 2[/td][/tr]" in message
    assert "[tr][td][b]bob[/b][/td][td]3[/td][/tr]" in message
    assert "[b]Total tickets:[/b] 3" in message


def test_result_post():
    game = make_game()
    draw = draw_winners(game.seed, "b" * 64, ENTRIES, 2)
    topic = TopicInfo(topic_id=501, author_uid=3, created_at=None, title="Node setup", merits=[3, 4])

    message = BBCodeRenderer().result_post(game, ENTRIES, draw, top_topic=(topic, ENTRIES[1]))

    assert ','.join(str(t) for t in draw.tickets_drawn) in message
    assert "https://mempool.space/api/block-height/800006" in message
    for winner in draw.winners:
        assert f"{winner.ticket} - {winner.author}" in message
    assert "[url=https://bitcointalk.org/index.php?topic=501.0]Node setup[/url] (7) by bob" in message


def test_custom_forum_url():
    renderer = BBCodeRenderer("https://forum.example.org")

    assert renderer.topic_url(3) == "https://forum.example.org/index.php?topic=3"
