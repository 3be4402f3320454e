"""
Database Schema Setup for Forum Raffles
Creates the game/entry tables and provides the record-level operations the
raffle engine needs (find, insert, conditional update)
"""

import json
import logging
from datetime import timezone

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from .models import Entry, Game, utcnow

logger = logging.getLogger(__name__)

# SQL schema for the raffle engine (portable between SQLite and PostgreSQL)
RAFFLE_SCHEMA_SQL = """
-- ============================================
-- FORUM RAFFLE DATABASE SCHEMA
-- ============================================

-- One raffle per forum thread
CREATE TABLE IF NOT EXISTS raffle_games (
    game_id INTEGER PRIMARY KEY,
    game_admin BIGINT NOT NULL,
    topic_id BIGINT NOT NULL UNIQUE,
    post_id BIGINT,
    post_content TEXT,
    deadline TIMESTAMP NOT NULL,
    number_winners INTEGER NOT NULL,
    seed TEXT NOT NULL,

    -- Progress (each set once as the raffle advances)
    block_height INTEGER,
    overview_post_id BIGINT,
    winner_post_id BIGINT,
    tickets_drawn TEXT,  -- JSON list of ticket numbers
    winner_entry_ids TEXT,  -- JSON list of entry ids

    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Submitted threads (a thread can enter at most one raffle, ever)
CREATE TABLE IF NOT EXISTS raffle_entries (
    entry_id INTEGER PRIMARY KEY,
    game_id INTEGER NOT NULL,
    post_id BIGINT NOT NULL,
    topic_id BIGINT NOT NULL UNIQUE,
    author TEXT NOT NULL,
    author_uid BIGINT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- ============================================
-- INDICES
-- ============================================

CREATE INDEX IF NOT EXISTS idx_raffle_entries_game ON raffle_entries(game_id);
CREATE INDEX IF NOT EXISTS idx_raffle_games_winner_post ON raffle_games(winner_post_id);
"""

REQUIRED_TABLES = ['raffle_games', 'raffle_entries']


def _ts(value):
    """Fixed-width UTC ISO timestamp (sorts correctly as text on SQLite)"""
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def setup_raffle_database(engine):
    """
    Create all raffle tables and indices

    Args:
        engine: SQLAlchemy engine instance

    Returns:
        bool: True if successful, False otherwise
    """
    try:
        logger.info("Setting up raffle database schema...")

        with engine.begin() as conn:
            # SQLite can only execute one statement at a time
            statements = []
            current_statement = []

            for line in RAFFLE_SCHEMA_SQL.split('\n'):
                stripped = line.strip()
                if not stripped or stripped.startswith('--'):
                    continue

                current_statement.append(line)

                if stripped.endswith(';'):
                    statements.append('\n'.join(current_statement))
                    current_statement = []

            for statement in statements:
                conn.execute(text(statement))

        logger.info("✅ Raffle database schema created successfully")
        return True

    except Exception as e:
        logger.error(f"❌ Failed to setup raffle database: {e}")
        return False


def verify_raffle_schema(engine):
    """
    Verify that all required tables exist

    Args:
        engine: SQLAlchemy engine instance

    Returns:
        dict: Status of each table (True/False)
    """
    status = {}

    for table in REQUIRED_TABLES:
        try:
            with engine.begin() as conn:
                conn.execute(text(f"SELECT 1 FROM {table} LIMIT 1"))
            status[table] = True
        except Exception as e:
            logger.debug(f"Table {table} check failed: {e}")
            status[table] = False

    return status


# ============================================
# GAMES
# ============================================

def get_game(engine, game_id):
    with engine.begin() as conn:
        row = conn.execute(text("""
            SELECT * FROM raffle_games WHERE game_id = :game_id
        """), {'game_id': game_id}).fetchone()

    return Game.from_row(row._mapping) if row else None


def find_game_by_topic(engine, topic_id):
    """
    Get the raffle bound to a forum thread

    Args:
        engine: SQLAlchemy engine instance
        topic_id: Forum thread id

    Returns:
        Game: The thread's game or None
    """
    with engine.begin() as conn:
        row = conn.execute(text("""
            SELECT * FROM raffle_games WHERE topic_id = :topic_id
        """), {'topic_id': topic_id}).fetchone()

    return Game.from_row(row._mapping) if row else None


def list_games(engine, unfinalized_only=True):
    """
    List games in creation order

    Args:
        engine: SQLAlchemy engine instance
        unfinalized_only: Skip games whose result post already exists

    Returns:
        list: Game records
    """
    query = "SELECT * FROM raffle_games"
    if unfinalized_only:
        query += " WHERE winner_post_id IS NULL"
    query += " ORDER BY game_id"

    with engine.begin() as conn:
        rows = conn.execute(text(query)).fetchall()

    return [Game.from_row(row._mapping) for row in rows]


def insert_game(engine, game_admin, topic_id, deadline, number_winners, seed):
    """
    Create a raffle for a thread, with the next monotonic game id

    Args:
        engine: SQLAlchemy engine instance
        game_admin: User id of the creator
        topic_id: Forum thread id
        deadline: Aware datetime when entries close
        number_winners: Number of distinct winners to draw
        seed: Pre-committed draw seed

    Returns:
        Game: The new game, or None if the thread already has one
    """
    now = _ts(utcnow())

    try:
        with engine.begin() as conn:
            existing = conn.execute(text("""
                SELECT 1 FROM raffle_games WHERE topic_id = :topic_id
            """), {'topic_id': topic_id}).fetchone()
            if existing:
                return None

            game_id = conn.execute(text("""
                SELECT COALESCE(MAX(game_id), 0) + 1 FROM raffle_games
            """)).scalar()

            conn.execute(text("""
                INSERT INTO raffle_games
                    (game_id, game_admin, topic_id, deadline, number_winners, seed, created_at, updated_at)
                VALUES
                    (:game_id, :game_admin, :topic_id, :deadline, :number_winners, :seed, :now, :now)
            """), {
                'game_id': game_id,
                'game_admin': game_admin,
                'topic_id': topic_id,
                'deadline': _ts(deadline),
                'number_winners': number_winners,
                'seed': seed,
                'now': now
            })
    except IntegrityError as e:
        logger.warning(f"Game for topic {topic_id} not created (already exists): {e}")
        return None

    logger.info(f"✅ Created game #{game_id} for topic {topic_id}")
    return get_game(engine, game_id)


def set_game_post(engine, game_id, post_id, post_content):
    """
    Record the raffle post and its rendered content

    The post id is written once; later calls only refresh the content.

    Returns:
        bool: True if the row was updated
    """
    with engine.begin() as conn:
        result = conn.execute(text("""
            UPDATE raffle_games
            SET post_id = :post_id,
                post_content = :post_content,
                updated_at = :now
            WHERE game_id = :game_id
              AND (post_id IS NULL OR post_id = :post_id)
        """), {
            'game_id': game_id,
            'post_id': post_id,
            'post_content': post_content,
            'now': _ts(utcnow())
        })
        return result.rowcount == 1


def delete_unpublished_game(engine, game_id):
    """
    Remove a game whose raffle post was never published, with its entries

    Frees the thread so the raffle can be started again.

    Returns:
        bool: True if the game was removed
    """
    with engine.begin() as conn:
        result = conn.execute(text("""
            DELETE FROM raffle_games
            WHERE game_id = :game_id
              AND post_id IS NULL
        """), {'game_id': game_id})
        if result.rowcount != 1:
            return False

        conn.execute(text("""
            DELETE FROM raffle_entries WHERE game_id = :game_id
        """), {'game_id': game_id})

    logger.info(f"Removed unpublished game #{game_id}")
    return True


def update_game_settings(engine, game_id, game_admin, number_winners=None, deadline=None, now=None):
    """
    Change winner count and/or deadline of an unfinished game

    The write only lands if the caller is the admin and the deadline has not
    passed at write time.

    Returns:
        bool: True if the row was updated
    """
    assignments = ["updated_at = :now_ts"]
    params = {
        'game_id': game_id,
        'game_admin': game_admin,
        'now_ts': _ts(now or utcnow())
    }

    if number_winners is not None:
        assignments.append("number_winners = :number_winners")
        params['number_winners'] = number_winners
    if deadline is not None:
        assignments.append("deadline = :deadline")
        params['deadline'] = _ts(deadline)

    with engine.begin() as conn:
        result = conn.execute(text(f"""
            UPDATE raffle_games
            SET {', '.join(assignments)}
            WHERE game_id = :game_id
              AND game_admin = :game_admin
              AND deadline > :now_ts
              AND overview_post_id IS NULL
        """), params)
        return result.rowcount == 1


def close_game(engine, game_id, block_height, overview_post_id):
    """
    Open -> Closed: store the target block and the closing announcement

    Returns:
        bool: True if this call performed the transition
    """
    with engine.begin() as conn:
        result = conn.execute(text("""
            UPDATE raffle_games
            SET block_height = :block_height,
                overview_post_id = :overview_post_id,
                updated_at = :now
            WHERE game_id = :game_id
              AND overview_post_id IS NULL
              AND block_height IS NULL
        """), {
            'game_id': game_id,
            'block_height': block_height,
            'overview_post_id': overview_post_id,
            'now': _ts(utcnow())
        })
        return result.rowcount == 1


def finalize_game(engine, game_id, winner_post_id, tickets_drawn, winner_entry_ids):
    """
    Closed -> Finalized: store the result post and the draw output

    Returns:
        bool: True if this call performed the transition
    """
    with engine.begin() as conn:
        result = conn.execute(text("""
            UPDATE raffle_games
            SET winner_post_id = :winner_post_id,
                tickets_drawn = :tickets_drawn,
                winner_entry_ids = :winner_entry_ids,
                updated_at = :now
            WHERE game_id = :game_id
              AND winner_post_id IS NULL
              AND overview_post_id IS NOT NULL
        """), {
            'game_id': game_id,
            'winner_post_id': winner_post_id,
            'tickets_drawn': json.dumps(list(tickets_drawn)),
            'winner_entry_ids': json.dumps(list(winner_entry_ids)),
            'now': _ts(utcnow())
        })
        return result.rowcount == 1


# ============================================
# ENTRIES
# ============================================

def entry_exists(engine, topic_id):
    with engine.begin() as conn:
        row = conn.execute(text("""
            SELECT 1 FROM raffle_entries WHERE topic_id = :topic_id
        """), {'topic_id': topic_id}).fetchone()
    return row is not None


def insert_entry(engine, game_id, post_id, topic_id, author, author_uid, now=None):
    """
    Register a thread as an entry, with the next monotonic entry id

    The insert only lands while the game is still open at write time: no
    closing announcement yet and the deadline not passed.

    Args:
        engine: SQLAlchemy engine instance
        game_id: Owning game
        post_id: Command post that submitted the thread
        topic_id: Submitted thread
        author: Submitter's username
        author_uid: Submitter's user id
        now: Write time (defaults to the current time)

    Returns:
        Entry: The new entry, or None if the thread is already registered
            or the game is no longer open
    """
    created_at = now or utcnow()

    try:
        with engine.begin() as conn:
            game_open = conn.execute(text("""
                SELECT 1 FROM raffle_games
                WHERE game_id = :game_id
                  AND overview_post_id IS NULL
                  AND deadline > :now
            """), {'game_id': game_id, 'now': _ts(created_at)}).fetchone()
            if not game_open:
                logger.info(f"Game #{game_id} is closed, topic {topic_id} not registered")
                return None

            existing = conn.execute(text("""
                SELECT 1 FROM raffle_entries WHERE topic_id = :topic_id
            """), {'topic_id': topic_id}).fetchone()
            if existing:
                return None

            entry_id = conn.execute(text("""
                SELECT COALESCE(MAX(entry_id), 0) + 1 FROM raffle_entries
            """)).scalar()

            conn.execute(text("""
                INSERT INTO raffle_entries
                    (entry_id, game_id, post_id, topic_id, author, author_uid, created_at)
                VALUES
                    (:entry_id, :game_id, :post_id, :topic_id, :author, :author_uid, :created_at)
            """), {
                'entry_id': entry_id,
                'game_id': game_id,
                'post_id': post_id,
                'topic_id': topic_id,
                'author': author,
                'author_uid': author_uid,
                'created_at': _ts(created_at)
            })
    except IntegrityError as e:
        logger.debug(f"Topic {topic_id} already registered: {e}")
        return None

    return Entry(
        entry_id=entry_id,
        game_id=game_id,
        post_id=post_id,
        topic_id=topic_id,
        author=author,
        author_uid=author_uid,
        created_at=created_at,
    )


def list_entries(engine, game_id):
    """
    Get a game's entries in insertion order (the order tickets are assigned in)

    Returns:
        list: Entry records
    """
    with engine.begin() as conn:
        rows = conn.execute(text("""
            SELECT * FROM raffle_entries
            WHERE game_id = :game_id
            ORDER BY entry_id
        """), {'game_id': game_id}).fetchall()

    return [Entry.from_row(row._mapping) for row in rows]
