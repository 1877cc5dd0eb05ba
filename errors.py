"""
Error types raised by the back-office services.

- ServiceError: Base exception
- ValidationError: A precondition was violated (bad input, wrong state, duplicate request)
- NotFoundError: A referenced entity does not exist
- ArchiveIOError: A backup archive could not be read or written
- SerializationError / DeserializationError: Snapshot payload encode/decode failures
- DependencyError: A downstream collaborator (permission catalogue, mail relay) failed

Validation and not-found errors carry caller-facing detail. The remaining
types are logged with full context and surfaced to HTTP callers as a generic
failure (see main.py).
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base exception for all service-layer errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.details = details or {}


class ValidationError(ServiceError):
    """A request cannot be honoured in the current state."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(message, details={"field": field_name} if field_name else None)
        self.field_name = field_name


class NotFoundError(ServiceError):
    """Referenced entity is absent."""

    code = "NOT_FOUND"

    def __init__(self, message: str, entity: Optional[str] = None, entity_id: Any = None) -> None:
        details = {}
        if entity:
            details["entity"] = entity
        if entity_id is not None:
            details["id"] = entity_id
        super().__init__(message, details=details)
        self.entity = entity
        self.entity_id = entity_id


class ArchiveIOError(ServiceError):
    """Backup archive read/write failure."""

    code = "ARCHIVE_IO_ERROR"


class SerializationError(ServiceError):
    """Snapshot could not be encoded."""

    code = "SERIALIZATION_ERROR"


class DeserializationError(ServiceError):
    """Snapshot payload could not be decoded or carries an unsupported version."""

    code = "DESERIALIZATION_ERROR"


class DependencyError(ServiceError):
    """Downstream collaborator failed."""

    code = "DEPENDENCY_ERROR"
