"""
Exceptions raised by the round engine and the reward ledger.

Each carries a stable ``code`` and an HTTP ``status_code`` so the transport
layer can render it without knowing the individual classes.
"""


class MemorixError(Exception):
    """Base exception for game and ledger errors."""
    code = 'ERROR'
    status_code = 400

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

    def to_dict(self):
        return {'success': False, 'error': self.code, 'message': self.user_message}


class InvalidInput(MemorixError):
    """Malformed round or administrative parameters."""
    code = 'INVALID_INPUT'

    def __init__(self, reason: str):
        super().__init__(f"Invalid input: {reason}", reason)


class NotAuthorized(MemorixError):
    """A privileged ledger operation was called by a non-owner identity."""
    code = 'NOT_AUTHORIZED'
    status_code = 403

    def __init__(self, caller: str, operation: str):
        super().__init__(
            f"{caller!r} is not allowed to call {operation}",
            "You are not allowed to perform this operation."
        )


class DailyChallengeError(MemorixError):
    """Precondition failures on the daily challenge path."""


class NotInitialized(DailyChallengeError):
    code = 'NOT_INITIALIZED'
    status_code = 404

    def __init__(self, date: int):
        super().__init__(
            f"No daily challenge configured for {date}",
            "Today's challenge is not available yet. Check back soon!"
        )


class AlreadyCompleted(DailyChallengeError):
    code = 'ALREADY_COMPLETED'
    status_code = 409

    def __init__(self, player: str, date: int):
        super().__init__(
            f"{player} already completed the challenge for {date}",
            "You already completed today's challenge. Come back tomorrow!"
        )


class TriesExceeded(DailyChallengeError):
    code = 'TRIES_EXCEEDED'
    status_code = 429

    def __init__(self, player: str, date: int, max_tries: int):
        super().__init__(
            f"{player} used all {max_tries} tries for {date}",
            f"You've used all {max_tries} tries today. Come back tomorrow!"
        )


class NotVerified(DailyChallengeError):
    code = 'NOT_VERIFIED'
    status_code = 422

    def __init__(self, player: str, date: int):
        super().__init__(
            f"Daily run for {player} on {date} is not a verified perfect in-time run",
            "Only a perfect run within the time limit counts for the daily challenge."
        )


class ArityMismatch(MemorixError):
    code = 'ARITY_MISMATCH'

    def __init__(self, expected: int, got):
        super().__init__(
            f"Leaderboard update expects {expected} entries per column, got {got}",
            "Leaderboard update is malformed."
        )


class WithdrawalError(MemorixError):
    """Withdrawal preconditions."""


class NoRewards(WithdrawalError):
    code = 'NO_REWARDS'
    status_code = 409

    def __init__(self, player: str):
        super().__init__(f"{player} has no pending rewards", "You have no rewards to withdraw.")


class InsufficientFunds(WithdrawalError):
    code = 'INSUFFICIENT_FUNDS'
    status_code = 503

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Escrow balance {available} cannot cover withdrawal of {requested}",
            "Withdrawals are temporarily unavailable. Please try again later."
        )
        self.requested = requested
        self.available = available


class RoundNotFound(MemorixError):
    code = 'ROUND_NOT_FOUND'
    status_code = 404

    def __init__(self, token: str):
        super().__init__(f"Round {token!r} not found", "Round not found. Start a new round.")


class RoundUnauthorized(MemorixError):
    code = 'UNAUTHORIZED'
    status_code = 403

    def __init__(self, token: str, player: str):
        super().__init__(
            f"{player} does not own round {token!r}",
            "This round belongs to another player."
        )
