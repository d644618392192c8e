from __future__ import annotations

from typing import List, Optional


class AnalystError(Exception):
    """Base error class for the analysis pipeline."""


class RateLimitExceeded(AnalystError):
    """Raised when a user has used up the requests of the current window."""

    def __init__(self, user_id: str, reset_at: float):
        self.user_id = user_id
        self.reset_at = reset_at
        super().__init__(f"Rate limit exceeded for user {user_id!r}; window resets at {reset_at:.0f}")


class InterpretationFailure(AnalystError):
    """Raised when an oracle is unreachable or returns unusable content."""


class ExecutionError(AnalystError):
    """Raised when DuckDB rejects a statement or the statement is not read-only."""

    def __init__(self, statement: str, message: str):
        self.statement = statement
        self.message = message
        super().__init__(f"{message} (statement: {statement[:500]})")


class ValidationFailure(AnalystError):
    """Raised when normalized chart data does not satisfy the chart contract."""


class OracleExhausted(AnalystError):
    """Raised when the hypothesis oracle fails on every allowed attempt."""

    def __init__(self, attempts: int, errors: Optional[List[str]] = None):
        self.attempts = attempts
        self.errors = list(errors or [])
        last = self.errors[-1] if self.errors else "unknown error"
        super().__init__(f"Hypothesis oracle failed after {attempts} attempts: {last}")
