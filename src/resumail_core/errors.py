"""
Error taxonomy for the analysis pipeline.

Ledger and final-persistence errors abort an ``analyze`` call. Oracle errors
are recovered locally and never reach the caller.
"""
from typing import Optional


class ResumailError(Exception):
    """Base class for all pipeline errors."""


class InvalidAnalysisRequest(ResumailError, ValueError):
    """Request rejected before any credits are touched."""


class LedgerError(ResumailError):
    """Credit reservation failed."""


class InsufficientCredits(LedgerError):
    """Account balance is lower than the requested amount.

    ``balance`` is a snapshot taken after the reservation was refused and may
    already include credits added concurrently.
    """

    def __init__(self, account_id: str, requested: int, balance: int):
        self.account_id = account_id
        self.requested = requested
        self.balance = balance
        super().__init__(
            f"Insufficient credits for account {account_id}: "
            f"requested {requested}, balance {balance}"
        )


class AccountNotFound(LedgerError):
    """No credit account exists for the given id."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AtomicDecrementUnavailable(ResumailError):
    """Account store cannot perform a conditional decrement."""


class OracleUnavailable(ResumailError):
    """Oracle call errored, timed out, or returned an empty answer."""

    def __init__(self, role: str, reason: str):
        self.role = role
        self.reason = reason
        super().__init__(f"Oracle unavailable for {role}: {reason}")


class StorageError(ResumailError):
    """Persistence layer failure."""

    def __init__(self, operation: str, detail: Optional[str] = None):
        self.operation = operation
        self.detail = detail
        message = f"Storage operation failed: {operation}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
