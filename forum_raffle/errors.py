"""
Raffle Errors
Exception types raised by command handlers, the lifecycle manager and clients
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(eq=False)
class RaffleError(Exception):
    """Base raffle error."""

    code: str
    message: str
    details: Optional[Any] = None

    def __str__(self):
        return self.message


class GameNotFoundError(RaffleError):
    """No game is bound to the thread or id."""

    def __init__(self, message: str = "Game not found", details: Optional[Any] = None) -> None:
        super().__init__(code="game_not_found", message=message, details=details)


class NotGameAdminError(RaffleError):
    """Caller is not the game's admin."""

    def __init__(self, message: str = "User is not game admin", details: Optional[Any] = None) -> None:
        super().__init__(code="not_game_admin", message=message, details=details)


class GameFinishedError(RaffleError):
    """Game deadline has already passed."""

    def __init__(self, message: str = "Game has finished", details: Optional[Any] = None) -> None:
        super().__init__(code="game_finished", message=message, details=details)


class InvalidCommandError(RaffleError):
    """Malformed or missing command parameters."""

    def __init__(self, message: str = "Invalid command parameters", details: Optional[Any] = None) -> None:
        super().__init__(code="invalid_command", message=message, details=details)


class LifecycleError(RaffleError):
    """A stage transition guard did not hold."""

    def __init__(self, message: str = "Invalid stage transition", details: Optional[Any] = None) -> None:
        super().__init__(code="lifecycle", message=message, details=details)


class DeadLetterError(RaffleError):
    """A queued request exhausted its retry attempts."""

    def __init__(self, message: str = "Request dead-lettered", details: Optional[Any] = None) -> None:
        super().__init__(code="dead_letter", message=message, details=details)


class ForumError(RaffleError):
    """Forum request failed or returned an unusable page."""

    def __init__(self, message: str = "Forum request failed", details: Optional[Any] = None) -> None:
        super().__init__(code="forum", message=message, details=details)


class AuthenticationError(ForumError):
    """Forum login failed. Fatal at startup."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Any] = None) -> None:
        RaffleError.__init__(self, code="authentication", message=message, details=details)


class BlockchainError(RaffleError):
    """Block height or hash lookup failed."""

    def __init__(self, message: str = "Blockchain lookup failed", details: Optional[Any] = None) -> None:
        super().__init__(code="blockchain", message=message, details=details)
