"""
Unified base exception classes for all services.

Each service module subclasses one of the error kinds below
(e.g. DuplicateVoteError(ConflictError)) so API handlers can map
any of them with a single `except ServiceError`.
"""


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Malformed or unacceptable input; the caller can fix the request."""

    def __init__(self, message: str):
        super().__init__(message, 400)


class ForbiddenError(ServiceError):
    def __init__(self, message: str):
        super().__init__(message, 403)


class NotFoundError(ServiceError):
    def __init__(self, message: str):
        super().__init__(message, 404)


class ConflictError(ServiceError):
    """Uniqueness or state precondition violated. Retrying the same request fails again."""

    def __init__(self, message: str):
        super().__init__(message, 409)


class InvariantError(ServiceError):
    """Data reached a state that valid operations cannot produce."""

    def __init__(self, message: str):
        super().__init__(message, 500)
