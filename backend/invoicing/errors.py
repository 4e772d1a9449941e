# Overview: Service error taxonomy shared by services and routes.

"""
Service errors.

Every error raised by the service layer derives from ServiceError and carries
the HTTP status the routes answer with, plus an optional details dict that is
returned to the caller unchanged.

Routes catch ServiceError and render it; anything else is an unexpected
failure, logged with current_app.logger.exception and answered with 500.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""
    status_code = 400

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class NotFoundError(ServiceError):
    """Referenced entity does not exist."""
    status_code = 404


class ConflictError(ServiceError, ValueError):
    """409-level business rule conflict (e.g., duplicate MB/PIB)."""
    status_code = 409


class DuplicateNameError(ConflictError):
    """A product group with the same name already exists."""


class AlreadyGroupedError(ConflictError):
    """A product may belong to at most one product group."""


class InvalidProductError(ValidationError):
    """Product cannot take part in lot tracking (no positive weight)."""


class AuthenticationError(ServiceError):
    """Missing, wrong or disabled credentials."""
    status_code = 401


class ForbiddenError(ServiceError):
    """Caller lacks the role or permission flag."""
    status_code = 403


class InvalidStateError(ServiceError):
    """Operation not allowed in the entity's current state."""
    status_code = 409


class PersistenceError(ServiceError):
    """Underlying storage failure."""
    status_code = 500
