"""
Raffle Draw Logic
Implements provably fair winner selection using SHA-256 hashing

Every input is public once the target block is mined:
    ticket(nonce) = int(SHA256(seed + block_hash + nonce)[:10], 16) % total_tickets + 1

The seed is committed when the raffle is created, the block hash is unknown
until after entries close, so nobody can steer the outcome.
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .config import TICKET_HEX_DIGITS

logger = logging.getLogger(__name__)


def generate_game_seed(timestamp=None):
    """
    Create the pre-committed seed for a new raffle

    The seed is the SHA-256 of the creation unix time. It is published with the
    raffle; its purpose is commitment, not secrecy.

    Args:
        timestamp: Unix time in seconds (defaults to now)

    Returns:
        str: 64 character hex string
    """
    if timestamp is None:
        timestamp = time.time()
    return hashlib.sha256(str(int(timestamp)).encode()).hexdigest()


def generate_ticket(seed, block_hash, nonce, total_tickets):
    """
    Draw one ticket number

    Args:
        seed: Game seed
        block_hash: Hex hash of the target block
        nonce: Draw index (0, 1, 2, ...)
        total_tickets: Number of tickets in play

    Returns:
        int: Ticket number in [1, total_tickets]
    """
    if total_tickets < 1:
        raise ValueError("total_tickets must be positive")

    combined = f"{seed}{block_hash}{nonce}"
    proof_hash = hashlib.sha256(combined.encode()).hexdigest()
    decimal = int(proof_hash[:TICKET_HEX_DIGITS], 16)
    return (decimal % total_tickets) + 1


@dataclass
class TicketRange:
    """Contiguous 1-based ticket numbers held by one author"""
    author: str
    author_uid: int
    start_ticket: int
    end_ticket: int
    entries: list = field(default_factory=list)

    @property
    def ticket_count(self):
        return self.end_ticket - self.start_ticket + 1

    def contains(self, ticket):
        return self.start_ticket <= ticket <= self.end_ticket

    def entry_for(self, ticket):
        """The entry holding a ticket inside this range"""
        return self.entries[ticket - self.start_ticket]


@dataclass
class Winner:
    author: str
    author_uid: int
    ticket: int
    entry_id: int


@dataclass
class DrawResult:
    seed: str
    block_hash: str
    total_tickets: int
    ticket_ranges: List[TicketRange]
    tickets_drawn: List[int]
    winners: List[Winner]

    @property
    def winner_entry_ids(self):
        return [winner.entry_id for winner in self.winners]


def build_ticket_ranges(entries):
    """
    Group entries by author and give each group a contiguous ticket range

    Groups keep the order of each author's first entry. Entries must already be
    in insertion order.

    Example: [(A, alice), (B, bob), (C, alice)] -> alice = 1-2, bob = 3

    Args:
        entries: Entry records in insertion order

    Returns:
        list: TicketRange per author
    """
    groups = {}
    for entry in entries:
        groups.setdefault(entry.author, []).append(entry)

    ticket_ranges = []
    current_ticket = 1

    for author, author_entries in groups.items():
        ticket_ranges.append(TicketRange(
            author=author,
            author_uid=author_entries[0].author_uid,
            start_ticket=current_ticket,
            end_ticket=current_ticket + len(author_entries) - 1,
            entries=author_entries,
        ))
        current_ticket += len(author_entries)

    return ticket_ranges


def resolve_ticket(ticket_ranges, ticket) -> Optional[TicketRange]:
    for ticket_range in ticket_ranges:
        if ticket_range.contains(ticket):
            return ticket_range
    return None


def draw_winners(seed, block_hash, entries, number_winners):
    """
    Run the raffle draw

    One ticket is drawn per winner slot (nonce 0 .. number_winners - 1). Each
    ticket resolves to the author owning it; repeat authors keep only their
    first (lowest nonce) ticket, so fewer distinct authors than slots means
    fewer winners.

    Args:
        seed: Game seed
        block_hash: Hex hash of the target block
        entries: Entry records in insertion order
        number_winners: Winner slots

    Returns:
        DrawResult: Tickets, ranges and winners
    """
    ticket_ranges = build_ticket_ranges(entries)
    total_tickets = len(entries)

    if not total_tickets:
        logger.warning("No entries to draw from")
        return DrawResult(
            seed=seed,
            block_hash=block_hash,
            total_tickets=0,
            ticket_ranges=[],
            tickets_drawn=[],
            winners=[],
        )

    tickets_drawn = [
        generate_ticket(seed, block_hash, nonce, total_tickets)
        for nonce in range(number_winners)
    ]

    winners = []
    seen_authors = set()

    for ticket in tickets_drawn:
        ticket_range = resolve_ticket(ticket_ranges, ticket)
        if ticket_range is None:
            raise RuntimeError(f"Ticket {ticket} outside of ranges (should never happen)")

        if ticket_range.author in seen_authors:
            continue
        seen_authors.add(ticket_range.author)

        winners.append(Winner(
            author=ticket_range.author,
            author_uid=ticket_range.author_uid,
            ticket=ticket,
            entry_id=ticket_range.entry_for(ticket).entry_id,
        ))

    winners = winners[:number_winners]

    logger.info(f"🎲 Draw with seed {seed} and block hash {block_hash}")
    logger.info(f"   Total tickets: {total_tickets}")
    logger.info(f"   Tickets drawn: {tickets_drawn}")
    logger.info(f"   Winners: {', '.join(winner.author for winner in winners)}")

    return DrawResult(
        seed=seed,
        block_hash=block_hash,
        total_tickets=total_tickets,
        ticket_ranges=ticket_ranges,
        tickets_drawn=tickets_drawn,
        winners=winners,
    )


def verify_draw(seed, block_hash, entries, number_winners, expected_tickets, expected_winner_entry_ids=None):
    """
    Recompute a published draw from its public inputs

    Args:
        seed: Published game seed
        block_hash: Hash of the published target block
        entries: Entries in insertion order
        number_winners: Winner slots at draw time
        expected_tickets: Published ticket numbers
        expected_winner_entry_ids: Published winner entries (optional)

    Returns:
        bool: True if the recomputed draw matches
    """
    result = draw_winners(seed, block_hash, entries, number_winners)

    if result.tickets_drawn != list(expected_tickets):
        return False
    if expected_winner_entry_ids is not None and result.winner_entry_ids != list(expected_winner_entry_ids):
        return False
    return True
