"""
Explicit success/failure values returned by core operations.

Core operations never raise for user-level problems (bad amounts, over
allocation, unknown ids). They hand back an OperationResult carrying either
the new state snapshot or the error, and always the state the caller should
keep using.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

from exceptions import FinanceAppError, UnknownEntityError

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Outcome of a core operation.

    Attributes:
        ok: True when the operation was applied (or was a harmless no-op)
        state: Resulting state; on failure this is the unchanged prior state
        error: Error describing why the operation was rejected
        warnings: Non-fatal notices (negative balance, exceeded envelope, ...)
        noop: True when nothing changed; for unknown ids error holds the
            UnknownEntityError while ok stays True
    """
    ok: bool
    state: Optional[T] = None
    error: Optional[FinanceAppError] = None
    warnings: List[str] = field(default_factory=list)
    noop: bool = False

    @classmethod
    def success(cls, state: Any, warnings: Optional[List[str]] = None) -> "OperationResult":
        """Build a successful result."""
        return cls(ok=True, state=state, warnings=list(warnings or []))

    @classmethod
    def failure(cls, error: FinanceAppError, state: Any = None) -> "OperationResult":
        """Build a rejected result that preserves the prior state."""
        return cls(ok=False, state=state, error=error)

    @classmethod
    def unchanged(cls, state: Any, message: str) -> "OperationResult":
        """Build a no-op result; nothing was applied."""
        return cls(ok=True, state=state, warnings=[message], noop=True)

    @classmethod
    def not_found(cls, state: Any, entity: str, entity_id: Any) -> "OperationResult":
        """No-op result for a reference to an id that does not exist."""
        message = f"{entity} {entity_id} not found"
        error = UnknownEntityError(message, details={"entity": entity.lower(), "id": entity_id})
        return cls(ok=True, state=state, error=error, warnings=[message], noop=True)

    def unwrap(self) -> T:
        """
        Return the state of a successful result.

        Raises:
            FinanceAppError: The carried error when the result is a failure
        """
        if not self.ok:
            raise self.error
        return self.state
