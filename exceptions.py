"""
Unified exception hierarchy for the finance engine.

This module defines the error taxonomy with FinanceAppError as the base
exception. Core operations (ledger, envelopes, analyzer, goals) do not raise
these for user-level conditions; they return them inside an OperationResult
so callers can show them as guidance. Infrastructure modules (config,
storage, snapshot import, backups) raise them after logging.
"""

from typing import Optional


class FinanceAppError(Exception):
    """
    Root of every error raised or reported by the finance engine.

    Attributes:
        message: Text shown to the user
        details: Context values (ids, amounts, paths) appended to str()
        original_error: Lower-level exception this one wraps, if any
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} ({context})"


class InvalidAmountError(FinanceAppError):
    """Raised when an amount is non-positive or non-numeric where a positive amount is required."""
    pass


class InvalidInputError(FinanceAppError):
    """Raised when arguments are malformed (analyzer inputs, unknown strategy, bad ids)."""
    pass


class OverAllocationError(FinanceAppError):
    """Raised when an envelope assignment would exceed the fund balance."""
    pass


class InsufficientEnvelopeFundsError(FinanceAppError):
    """Raised when a transfer exceeds what the source envelope has available."""
    pass


class UnknownEntityError(FinanceAppError):
    """Describes a reference to an id that does not exist (reported, never fatal)."""
    pass


class ConfigError(FinanceAppError):
    """Raised when configuration loading or validation fails."""
    pass


class DatabaseError(FinanceAppError):
    """Raised when database operations fail."""
    pass


class SnapshotError(FinanceAppError):
    """Raised when a snapshot document cannot be exported or imported."""
    pass


class SchemaMigrationError(SnapshotError):
    """Raised when a stored document has an unsupported schema version."""
    pass


class BackupError(FinanceAppError):
    """Raised when backup operations fail."""
    pass
