"""
Core Application - Infrastructure & Base Classes

Generic, reusable building blocks shared by the chat and notification apps.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Services (import from core.services):
    - BaseService: Base class for service layer (logger, atomic, validation)

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError, NotFoundError, PermissionDeniedError,
      ConflictError, RateLimitError, ExternalServiceError

Exception handling (core.exception_handler):
    - application_exception_handler: DRF handler rendering the above
"""
