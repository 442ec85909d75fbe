# Overview: Service-layer error taxonomy; each error knows its HTTP status.

"""
Domain errors raised by the service layer.

Routes catch ServiceError and render {"message": ..., **extra} with the
error's status_code. Anything that is not a ServiceError is logged and
returned as a generic 500.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for errors that map onto a client-visible response."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message, **self.extra}


class BadRequestError(ServiceError):
    """Malformed or missing input."""
    status_code = 400
    default_message = "Bad request"


class ValidationError(ServiceError):
    """Input is well-formed but breaks a business rule (metadata shape, quantity format)."""
    status_code = 400
    default_message = "Validation failed"


class InvalidBranchError(ServiceError):
    status_code = 400
    default_message = "Invalid branch"


class InvalidTransitionError(ServiceError):
    status_code = 400
    default_message = "Invalid status transition"


class InsufficientStockError(ServiceError):
    status_code = 400
    default_message = "Requested quantity exceeds available stock"


class InvalidStateError(ServiceError):
    """The change would leave inventory quantities in an impossible state."""
    status_code = 400
    default_message = "Invalid inventory state"


class UnauthorizedError(ServiceError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidCredentialsError(UnauthorizedError):
    # Generic on purpose: never reveal whether the email exists
    default_message = "Invalid login credentials"


class ForbiddenError(ServiceError):
    status_code = 403
    default_message = "Forbidden"


class RoleNotAllowedError(ForbiddenError):
    default_message = "Role not allowed"


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ServiceError):
    status_code = 409
    default_message = "Conflict"


class SessionConflictError(ConflictError):
    default_message = "User already logged in elsewhere"
