"""
Core Exceptions
================

Error taxonomy for the complaint lifecycle engine.

Every core operation either returns its result or raises one of these;
the HTTP layer maps them to status codes in one place.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(ApplicationException):
    """A required field is missing or a value is not acceptable."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.field = field
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details)


class ConflictError(ApplicationException):
    """Stale version, already-assigned ticket or illegal status transition."""


class NotFoundError(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class PermissionDeniedError(ApplicationException):
    """The acting user's role may not perform the operation."""

    def __init__(self, role: str, action: str, details: Optional[dict] = None):
        self.role = role
        self.action = action
        super().__init__(f"Role '{role}' may not {action}", details)


class ExternalDependencyError(ApplicationException):
    """A store or config dependency failed; the transaction was aborted."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)
