"""
Exception hierarchy for the queue orchestration engine.

Exception Hierarchy:
    QueueError (base)
    ├── ValidationError
    │   └── RuleDefinitionError
    ├── NotFoundError
    ├── InvalidTransitionError
    ├── PersistenceError
    └── VerificationError

Validation and transition errors are raised to the caller. PersistenceError is
caught at the persistence boundary (see persistence.sync) and VerificationError
degrades check-in verification to manual confirmation.
"""
from typing import Any, Dict, Optional


class QueueError(Exception):
    """
    Base exception for all engine errors.

    Attributes:
        error_type: String identifier for the error type
        message: Human-readable error message
        details: Additional context about the error
    """
    error_type = "QueueError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a serializable dictionary."""
        result = {"error": self.error_type, "message": self.message}
        if self.details:
            result.update(self.details)
        return result

    def __str__(self) -> str:
        return f"{self.error_type}: {self.message}"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}('{self.message}')>"


class ValidationError(QueueError):
    """Malformed or incomplete request (e.g. empty services list)."""
    error_type = "ValidationError"


class RuleDefinitionError(ValidationError):
    """A queue control rule uses an unknown field, operator or action."""
    error_type = "RuleDefinitionError"


class NotFoundError(QueueError):
    """Operation on an unknown entry, employee, service, check-in or location."""
    error_type = "NotFoundError"

    def __init__(self, kind: str, identifier: str):
        super().__init__(
            f"{kind} '{identifier}' not found",
            details={"kind": kind, "id": identifier},
        )
        self.kind = kind
        self.identifier = identifier


class InvalidTransitionError(QueueError):
    """Illegal queue status edge."""
    error_type = "InvalidTransitionError"

    def __init__(self, entry_id: str, current: str, requested: str):
        super().__init__(
            f"Cannot move entry '{entry_id}' from {current} to {requested}",
            details={"entry_id": entry_id, "from": current, "to": requested},
        )
        self.current = current
        self.requested = requested


class PersistenceError(QueueError):
    """The storage or event collaborator failed."""
    error_type = "PersistenceError"


class VerificationError(QueueError):
    """Check-in presence could not be established by a verification method."""
    error_type = "VerificationError"
