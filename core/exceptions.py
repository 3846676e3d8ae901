"""Tool Ledger — Core Exceptions.

Domain-specific exceptions for the service layer. Transport adapters
catch these and convert them to their own error responses via to_dict().

Taxonomy:
    ValidationError       → malformed input, raised before any transaction
    NotFoundError         → referenced tool/event/factory does not exist
    ConflictError         → concurrent mutation detected after retrying
    ConsistencyViolation  → post-write invariant failed (a bug, always fatal)
    UnsupportedDialectError → database without ON CONFLICT upsert support

Usage:
    from core.exceptions import NotFoundError

    tool = await session.get(Tool, tool_id)
    if tool is None:
        raise NotFoundError("Tool", tool_id)
"""

from __future__ import annotations

from typing import Any


class ToolLedgerError(Exception):
    """Base exception for all tool ledger domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ToolLedgerError):
    """Raised when input is missing, malformed or outside an allowed enum.

    Attributes:
        field: Name of the offending field.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error on '{field}': {message}", {"field": field})


class InvalidEventType(ValidationError):
    """Raised when a maintenance event type is not regrinding/resegmentation."""

    def __init__(self, event_type: Any, allowed: list[str]):
        self.event_type = event_type
        super().__init__(
            "event_type",
            f"'{event_type}' is not one of {allowed}",
        )


class NotFoundError(ToolLedgerError):
    """Raised when a requested resource does not exist.

    Attributes:
        resource_type: Type of resource (e.g., "Tool", "MaintenanceEvent").
        resource_id: Identifier of the missing resource.
    """

    def __init__(self, resource_type: str, resource_id: Any):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(message, {"resource_type": resource_type, "resource_id": str(resource_id)})


class ConflictError(ToolLedgerError):
    """Raised when a concurrent update to the same tool was detected.

    Attributes:
        transient: True when retrying the whole operation later may succeed.
    """

    def __init__(self, message: str, *, transient: bool = True, details: dict[str, Any] | None = None):
        self.transient = transient
        super().__init__(message, {"transient": transient, **(details or {})})


class ConsistencyViolation(ToolLedgerError):
    """Raised when a projection invariant fails after a write.

    Always fatal to the enclosing transaction. Indicates a bug rather than
    bad input.

    Attributes:
        check: Name of the failed invariant check.
        context: Values observed when the check failed.
    """

    def __init__(self, check: str, context: dict[str, Any] | None = None):
        self.check = check
        self.context = context or {}
        super().__init__(f"Consistency violation: {check}", {"check": check, **self.context})


class UnsupportedDialectError(ToolLedgerError):
    """Raised when the bound database has no upsert support in the ledger.

    Attributes:
        dialect: SQLAlchemy dialect name of the session's bind.
    """

    def __init__(self, dialect: str, operation: str):
        self.dialect = dialect
        super().__init__(
            f"{operation} is not supported on dialect '{dialect}'",
            {"dialect": dialect, "operation": operation},
        )
