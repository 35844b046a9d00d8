"""
Exception hierarchy for the assessment engine.

    AssessmentError (base)
    ├── NotFoundError      nothing selectable and no fallback applies
    ├── InvalidStateError  operation outside its legal session state
    └── StorageError       persistence read/write failure
"""

from __future__ import annotations

from typing import Any


class AssessmentError(Exception):
    """Base exception for all assessment engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(AssessmentError):
    """Raised when no questions or topics are available for a learner."""
    pass


class InvalidStateError(AssessmentError):
    """Raised when a session operation is attempted in the wrong state."""

    def __init__(self, operation: str, state: str, reason: str | None = None):
        message = f"Cannot {operation} while session is '{state}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, {"operation": operation, "state": state})
        self.operation = operation
        self.state = state


class StorageError(AssessmentError):
    """Raised when the topic/question store or session store fails."""

    def __init__(self, operation: str, cause: Exception | None = None):
        message = f"Storage operation '{operation}' failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message, {"operation": operation})
        self.operation = operation
        self.cause = cause
