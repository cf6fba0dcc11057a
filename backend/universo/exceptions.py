"""Domain errors raised by the access-control services.

Services raise these and never build HTTP responses themselves; the API
layer maps ``status_code`` onto the response via
:func:`universo.api.errors.register_exception_handlers`.
"""

from __future__ import annotations


class UniversoError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotAuthenticatedError(UniversoError):
    status_code = 401


class NotFoundError(UniversoError):
    """Target entity or its mandatory link chain does not exist."""

    status_code = 404


class ForbiddenError(UniversoError):
    """Entity is reachable but the caller lacks membership or permission."""

    status_code = 403


class OwnerImmutableError(ForbiddenError):
    """The ``owner`` membership can never be assigned, changed or removed."""

    def __init__(self, message: str = "Cannot modify or remove the container owner") -> None:
        super().__init__(message)


class InvalidRoleError(UniversoError, ValueError):
    """A role string is not one of the known membership roles."""

    status_code = 400

    def __init__(self, role: object) -> None:
        self.role = role
        super().__init__(f"Unknown role: {role}")


class InvalidReferenceError(UniversoError):
    """A supplied foreign id does not resolve to an existing row."""

    status_code = 400


class ConflictError(UniversoError):
    status_code = 409


class CycleDetectedError(UniversoError):
    """Adding a composition edge would close a cycle."""

    status_code = 400

    def __init__(self, parent_id: object, child_id: object) -> None:
        self.parent_id = parent_id
        self.child_id = child_id
        super().__init__(f"Adding {child_id} under {parent_id} would create a cycle")
