"""
Exception hierarchy for caltodo services.

Every error carries a ``status_code`` matching the HTTP response the
controller layer should produce for it.
"""

from typing import Optional


class CalTodoError(Exception):
    """Base exception for caltodo service errors."""

    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(CalTodoError):
    """Raised when an entity is missing or belongs to another user."""

    status_code = 404

    def __init__(self, entity: str, entity_id, field: Optional[str] = None) -> None:
        super().__init__(f"{entity} with id {entity_id} not found", field)
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(CalTodoError):
    """Raised when input violates a field or hierarchy rule."""

    status_code = 400


class NestingLimitError(ValidationError):
    """Raised when nesting depth would exceed the configured maximum."""
    pass


class ProjectMismatchError(ValidationError):
    """Raised when a child task's project would differ from its parent's."""
    pass


class DailyLimitError(ValidationError):
    """Raised when a date already holds the maximum number of tasks."""
    pass


class CycleDetectedError(ValidationError):
    """Raised when reparenting would make an entity its own ancestor."""
    pass


class ConflictError(CalTodoError):
    """Raised when an operation conflicts with existing data."""

    status_code = 409


class StorageError(CalTodoError):
    """Raised when the underlying database operation fails."""

    status_code = 500
