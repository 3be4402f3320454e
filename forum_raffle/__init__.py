"""
Forum Raffle Package
Unattended raffles in forum threads, drawn with a future Bitcoin block hash
"""

__version__ = "1.0.0"

# Export main components
from .commands import RaffleCommands, setup_raffle_commands
from .config import RaffleSettings
from .database import setup_raffle_database, verify_raffle_schema
from .draw import draw_winners, generate_game_seed, verify_draw
from .scheduler import RaffleScheduler, setup_raffle_scheduler
from .throttle import RequestQueue
from .validator import EntryValidator

__all__ = [
    'RaffleCommands',
    'setup_raffle_commands',
    'RaffleSettings',
    'setup_raffle_database',
    'verify_raffle_schema',
    'draw_winners',
    'generate_game_seed',
    'verify_draw',
    'RaffleScheduler',
    'setup_raffle_scheduler',
    'RequestQueue',
    'EntryValidator',
]
