"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from municipal_ticketing.core.exceptions import (
    ApplicationException,
    ValidationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ExternalDependencyError,
)

__all__ = [
    "ApplicationException",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "PermissionDeniedError",
    "ExternalDependencyError",
]
