"""
Custom exceptions for the standings core with caller-facing error messages.

Three kinds reach callers: validation failures (nothing was written),
storage failures (the submission was rolled back as a whole and may be
retried) and lookups of players the core knows nothing about.
"""

class StandingsException(Exception):
    """Base exception for standings-related errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class ValidationError(StandingsException):
    """Raised when a submitted result or query argument is malformed."""
    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid value for '{field}': {reason}",
            f"Invalid data: {reason}"
        )
        self.field = field
        self.reason = reason

class InvalidPartitionError(ValidationError):
    """Raised when a partition spec cannot be parsed."""
    def __init__(self, spec: str, reason: str):
        super().__init__('partition', f"{reason} (got {spec!r})")
        self.spec = spec

class StorageError(StandingsException):
    """Raised when the ledger, aggregate or cache write fails."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Storage error during {operation}: {details}",
            "Could not save the result. Please try again later."
        )
        self.operation = operation

class TransactionError(StorageError):
    """Raised when write conflicts persist after all retries."""
    def __init__(self, operation: str, attempts: int):
        super().__init__(operation, f"conflicting writes after {attempts} attempts")
        self.attempts = attempts

class SubmissionTimeoutError(StorageError):
    """Raised when a storage call exceeds its caller-supplied timeout."""
    def __init__(self, operation: str, timeout: float):
        super().__init__(operation, f"timed out after {timeout:.2f}s")
        self.timeout = timeout

class CacheConsistencyError(StorageError):
    """Raised when the leaderboard entry disagrees with the player aggregate."""
    def __init__(self, player_id: int, expected: int, cached: int):
        super().__init__(
            "leaderboard cache update",
            f"player {player_id} cached best {cached} does not trail aggregate best {expected}"
        )
        self.player_id = player_id
        self.expected = expected
        self.cached = cached

class NotFoundError(StandingsException):
    """Raised when a player has no profile or no recorded results."""
    def __init__(self, player_id: int):
        super().__init__(
            f"Player {player_id} not found",
            "Player not found."
        )
        self.player_id = player_id
