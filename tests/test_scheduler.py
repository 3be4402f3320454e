"""
Test Raffle Scheduler
Open -> Closed -> Finalized transitions and their guards
"""

from datetime import datetime, timezone

import pytest

from forum_raffle import database
from forum_raffle.draw import draw_winners
from forum_raffle.errors import LifecycleError
from forum_raffle.models import Stage
from forum_raffle.scheduler import RaffleScheduler

PAST = datetime(2020, 1, 1, tzinfo=timezone.utc)
BLOCK_HASH = "00000000000000000002a7c4c1e48d76c5a37902165a270156b7a8d72728a054"


@pytest.fixture
def scheduler(engine, forum, chain, queue, settings):
    return RaffleScheduler(engine, forum, chain, queue, settings)


def add_entries(add_entry, game):
    add_entry(game, 500, 'alice', 2)
    add_entry(game, 501, 'bob', 3)
    add_entry(game, 502, 'alice', 2)


@pytest.mark.asyncio
async def test_open_game_before_deadline_is_untouched(engine, forum, scheduler, make_game):
    game = make_game()

    assert await scheduler.check_game(game) is None
    assert await scheduler.check_games() == []
    assert database.get_game(engine, game.game_id).stage == Stage.OPEN
    assert forum.published == []


@pytest.mark.asyncio
async def test_finished_game_is_closed(engine, forum, chain, scheduler, make_game, add_entry):
    game = make_game(deadline=PAST)
    add_entries(add_entry, game)

    closed = await scheduler.check_game(game)

    assert closed.stage == Stage.CLOSED
    assert closed.block_height == chain.height + 6
    assert len(forum.published) == 1
    announcement = forum.published[0]
    assert closed.overview_post_id == announcement['post_id']
    assert announcement['subject'] == "Raffle closed"
    assert str(closed.block_height) in announcement['message']
    assert game.seed in announcement['message']
    assert "1 ~ 2" in announcement['message']


@pytest.mark.asyncio
async def test_close_uses_configured_confirmations(engine, forum, chain, queue, settings, make_game):
    settings.block_confirmations = 2
    scheduler = RaffleScheduler(engine, forum, chain, queue, settings)
    game = make_game(deadline=PAST)

    closed = await scheduler.close_game(game)

    assert closed.block_height == chain.height + 2


@pytest.mark.asyncio
async def test_close_fails_without_tip_height(engine, forum, chain, scheduler, make_game):
    game = make_game(deadline=PAST)
    chain.fail = True

    assert await scheduler.check_games() == []

    game = database.get_game(engine, game.game_id)
    assert game.stage == Stage.OPEN
    assert game.block_height is None
    assert forum.published == []


@pytest.mark.asyncio
async def test_close_refuses_existing_overview(engine, scheduler, make_game):
    game = make_game(deadline=PAST)
    database.close_game(engine, game.game_id, 800006, 6001)

    with pytest.raises(LifecycleError):
        await scheduler.close_game(database.get_game(engine, game.game_id))


@pytest.mark.asyncio
async def test_closed_game_waits_for_block(engine, forum, chain, scheduler, make_game):
    game = make_game(deadline=PAST)
    database.close_game(engine, game.game_id, chain.height + 6, 6001)

    assert await scheduler.check_game(database.get_game(engine, game.game_id)) is None
    assert database.get_game(engine, game.game_id).stage == Stage.CLOSED
    assert forum.published == []


@pytest.mark.asyncio
async def test_closed_game_is_finalized(engine, forum, chain, scheduler, make_game, add_entry):
    game = make_game(deadline=PAST, number_winners=2)
    add_entries(add_entry, game)
    target = chain.height + 6
    database.close_game(engine, game.game_id, target, 6001)

    chain.height = target
    chain.hashes[target] = BLOCK_HASH
    finalized = await scheduler.check_game(database.get_game(engine, game.game_id))

    expected = draw_winners(game.seed, BLOCK_HASH, database.list_entries(engine, game.game_id), 2)
    assert finalized.stage == Stage.FINALIZED
    assert finalized.tickets_drawn == expected.tickets_drawn
    assert finalized.winner_entry_ids == expected.winner_entry_ids

    result = forum.published[-1]
    assert finalized.winner_post_id == result['post_id']
    assert result['subject'] == "Raffle finished"
    assert BLOCK_HASH in result['message']
    for winner in expected.winners:
        assert f"{winner.ticket} - {winner.author}" in result['message']


@pytest.mark.asyncio
async def test_finalize_without_entries(engine, forum, chain, scheduler, make_game):
    game = make_game(deadline=PAST)
    database.close_game(engine, game.game_id, chain.height, 6001)
    chain.hashes[chain.height] = BLOCK_HASH

    finalized = await scheduler.check_game(database.get_game(engine, game.game_id))

    assert finalized.tickets_drawn == []
    assert finalized.winner_entry_ids == []
    assert "No entries" in forum.published[-1]['message']


@pytest.mark.asyncio
async def test_finalize_requires_block_height(engine, scheduler, make_game):
    game = make_game(deadline=PAST)

    with pytest.raises(LifecycleError):
        await scheduler.finalize_game(game)


@pytest.mark.asyncio
async def test_finalize_fails_without_block_hash(engine, forum, chain, scheduler, make_game):
    game = make_game(deadline=PAST)
    database.close_game(engine, game.game_id, chain.height, 6001)

    assert await scheduler.check_games() == []
    assert database.get_game(engine, game.game_id).stage == Stage.CLOSED
    assert forum.published == []


@pytest.mark.asyncio
async def test_result_names_most_merited_topic(engine, forum, chain, scheduler, make_game, add_entry):
    game = make_game(deadline=PAST)
    add_entries(add_entry, game)
    forum.add_topic(500, author_uid=2, title="Mining guide", merits=[1, 1])
    forum.add_topic(501, author_uid=3, title="Node setup", merits=[5, 2])
    database.close_game(engine, game.game_id, chain.height, 6001)
    chain.hashes[chain.height] = BLOCK_HASH

    await scheduler.check_game(database.get_game(engine, game.game_id))

    message = forum.published[-1]['message']
    assert "Node setup[/url] (7) by bob" in message
    assert 502 in forum.lookups


@pytest.mark.asyncio
async def test_one_transition_per_cycle(engine, forum, chain, scheduler, make_game, add_entry):
    game = make_game(deadline=PAST)
    add_entries(add_entry, game)
    chain.hashes[chain.height + 6] = BLOCK_HASH

    advanced = await scheduler.check_games()
    assert [g.stage for g in advanced] == [Stage.CLOSED]

    chain.height += 6
    advanced = await scheduler.check_games()
    assert [g.stage for g in advanced] == [Stage.FINALIZED]

    finalized = database.get_game(engine, game.game_id)
    assert await scheduler.check_games() == []
    assert await scheduler.check_game(finalized) is None
    assert len(forum.published) == 2
    assert database.get_game(engine, game.game_id) == finalized


@pytest.mark.asyncio
async def test_failing_game_does_not_block_others(engine, forum, chain, scheduler, make_game):
    broken = make_game(topic_id=10, deadline=PAST)
    healthy = make_game(topic_id=11, deadline=PAST)
    database.close_game(engine, broken.game_id, chain.height, 6001)

    advanced = await scheduler.check_games()

    assert [g.game_id for g in advanced] == [healthy.game_id]
    assert database.get_game(engine, broken.game_id).stage == Stage.CLOSED
