"""
Raffle Post Rendering
Turns a raffle's state into forum BBCode for the raffle, closing and result posts
"""

from .draw import build_ticket_ranges

VERIFY_BLOCK_URL = "https://mempool.space/api/block-height/{height}"

DRAW_EXPLANATION = """[pre]1. Concatenate GAME SEED + BLOCK HASH + NONCE (0, 1, 2, ...);
2. Compute the SHA256 hash of that string;
3. Convert the first 10 hex characters of the hash to decimal;
4. Take that decimal modulo the total number of tickets ({total}) and add 1.[/pre]"""


def _ticket_label(ticket_range):
    if ticket_range.ticket_count == 1:
        return str(ticket_range.start_ticket)
    return f"{ticket_range.start_ticket} ~ {ticket_range.end_ticket}"


class BBCodeRenderer:
    """Renders raffle posts as forum markup"""

    def __init__(self, forum_url="https://bitcointalk.org"):
        self.forum_url = forum_url

    def topic_url(self, topic_id):
        return f"{self.forum_url}/index.php?topic={topic_id}"

    # ========================================
    # SUBJECTS
    # ========================================

    def open_subject(self, game):
        return f"Raffle #{game.game_id}"

    def edit_subject(self, game):
        return f"[Open] Raffle #{game.game_id}"

    def closed_subject(self, game):
        return "Raffle closed"

    def result_subject(self, game):
        return "Raffle finished"

    # ========================================
    # BODIES
    # ========================================

    def entries_table(self, entries):
        """Participants with their ticket count and submitted threads"""
        ticket_ranges = build_ticket_ranges(entries)

        if not ticket_ranges:
            return "[table]\n[tr][td]...[/td][/tr]\n[/table]"

        rows = [
            "[tr][td][b]User[/b][/td][td][b]Tickets[/b][/td][td][b]Topics[/b][/td][/tr]",
            "[tr][td]________________[/td][td]________________[/td][td]________________[/td][/tr]",
        ]
        for ticket_range in ticket_ranges:
            topics = ', '.join(
                f"[url={self.topic_url(entry.topic_id)}]{index + 1}[/url]"
                for index, entry in enumerate(ticket_range.entries)
            )
            rows.append(
                f"[tr][td][b]{ticket_range.author}[/b][/td]"
                f"[td]{ticket_range.ticket_count}[/td][td]{topics}[/td][/tr]"
            )

        return "[table]\n" + '\n'.join(rows) + "\n[/table]"

    def ticket_table(self, entries):
        """Participants with the ticket numbers they hold"""
        ticket_ranges = build_ticket_ranges(entries)

        if not ticket_ranges:
            return "[table]\n[tr][td]...[/td][/tr]\n[/table]"

        rows = [
            "[tr][td][b]User[/b][/td][td][b]Tickets[/b][/td][/tr]",
            "[tr][td]________________[/td][td]________________[/td][/tr]",
        ]
        for ticket_range in ticket_ranges:
            rows.append(f"[tr][td][b]{ticket_range.author}[/b][/td][td]{_ticket_label(ticket_range)}[/td][/tr]")

        return "[table]\n" + '\n'.join(rows) + "\n[/table]"

    def open_post(self, game, entries):
        deadline = game.deadline.strftime('%d/%m/%Y %H:%M:%S UTC')
        example_url = self.topic_url(5248878)

        return f"""
[size=12pt][b]Raffle #{game.game_id}[/b][/size]

[list]
[li]Deadline: {deadline}[/li]
[li]Number of winners: {game.number_winners}[/li]
[/list]

[hr]

[b]How to participate:[/b]

  -> Reply with +entry followed by the full link of each of your topics, one per line
  -> Only topics you started before the deadline count
  -> Example:

[quote]
Thanks for the raffle!

+entry {example_url}
[/quote]

[hr]

Seed: {game.seed}

[hr]

[b][glow=lightgreen,2,300]Entries:[/glow][/b]

{self.entries_table(entries)}
""".strip()

    def closed_post(self, game, entries, block_height):
        total = len(entries)

        return f"""
Raffle closed for new entries!

[hr]

[b]Chosen block:[/b]
[glow=lightgreen,2,300][size=16pt][b]{block_height}[/b][/size][/glow]

[b]Seed:[/b] {game.seed}

[hr]

[b]How each winning ticket will be drawn:[/b]
{DRAW_EXPLANATION.format(total=total)}

[hr]

[b]Total tickets:[/b] {total}
[quote]{self.ticket_table(entries)}[/quote]

[hr]

Block hash: {VERIFY_BLOCK_URL.format(height=block_height)}
""".strip()

    def result_post(self, game, entries, draw, top_topic=None):
        if draw.winners:
            heading = "Winners:" if len(draw.winners) > 1 else "Winner:"
            winner_lines = '\n'.join(f"{winner.ticket} - {winner.author}" for winner in draw.winners)
        else:
            heading = "Winner:"
            winner_lines = "No entries, no winners."

        tickets = ','.join(str(ticket) for ticket in draw.tickets_drawn)
        verify_url = VERIFY_BLOCK_URL.format(height=game.block_height)

        message = f"""
And the drums roll...

[hr]

[b]Seed:[/b] {game.seed}
[b]Block hash:[/b] {draw.block_hash} ([url={verify_url}]verify[/url])

[hr]

[b]Tickets drawn:[/b]
[code]{tickets}[/code]

[b]{heading}[/b]

{winner_lines}

[hr]

[b]How to verify the winner(s):[/b]
{DRAW_EXPLANATION.format(total=draw.total_tickets)}
""".strip()

        if top_topic is not None:
            topic_info, entry = top_topic
            message += (
                f"\n\n[hr]\n\n- Most merited topic: [url={self.topic_url(topic_info.topic_id)}.0]"
                f"{topic_info.title}[/url] ({topic_info.merit_total}) by {entry.author}"
            )

        return message
