"""
Core Application - Infrastructure & Base Classes

This app contains infrastructure code shared by the domain apps:

- Generic, reusable base classes (no domain-specific logic)
- The application error hierarchy and its DRF translation
- Infrastructure endpoints (health check)

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Services (import from core.services):
    - BaseService: Base class for service layer

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - InvalidArgument: Malformed or out-of-range input
    - AuthenticationError: Missing or invalid credential
    - AccessDenied: Authenticated but not allowed
    - NotFoundError: Resource not found
    - ConflictError: State conflicts (duplicates, etc.)
    - StorageError: Persistence or presence backend unavailable

Usage:
    from core.models import BaseModel
    from core.services import BaseService
    from core.exceptions import InvalidArgument, NotFoundError

Note:
    Django models are NOT imported here to avoid AppRegistryNotReady
    errors. Import them directly from their modules.
"""

# Services (no Django model dependencies)
from .services import BaseService

# Exceptions (no Django dependencies)
from .exceptions import (
    AccessDenied,
    AuthenticationError,
    BaseApplicationError,
    ConflictError,
    InvalidArgument,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Services
    "BaseService",
    # Exceptions
    "BaseApplicationError",
    "InvalidArgument",
    "AuthenticationError",
    "AccessDenied",
    "NotFoundError",
    "ConflictError",
    "StorageError",
]
