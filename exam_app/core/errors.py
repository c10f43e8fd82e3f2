"""Error taxonomy shared by the services, storage adapters and the HTTP layer.

Every error carries a stable ``kind`` so callers can branch on the category
(validation vs. not-found vs. transient) without inspecting provider codes.
"""

from __future__ import annotations


class ExamAppError(Exception):
    """Base class for all application errors."""

    kind: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(ExamAppError):
    """Raised when caller input violates a precondition."""

    kind = "invalid_input"


class NotFoundError(ExamAppError):
    """Raised when an exam, question set, result or user does not exist."""

    kind = "not_found"


class PersistenceError(ExamAppError):
    """Raised when the document store rejects or fails a read or write."""

    kind = "persistence"


class ExternalServiceError(ExamAppError):
    """Raised when the AI collaborator or the auth service fails."""

    kind = "external_service"


class PermissionDeniedError(ExamAppError):
    """Raised when the authenticated role lacks a capability."""

    kind = "permission_denied"


class ConflictError(ExamAppError):
    """Raised when a write would collide with existing data."""

    kind = "conflict"


class SessionStateError(ExamAppError):
    """Raised when an exam session operation is not valid in its current state."""

    kind = "invalid_state"


class MigrationError(ExamAppError):
    """Raised when the user re-keying batch cannot be staged or committed."""

    kind = "migration"
