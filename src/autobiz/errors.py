"""Exception hierarchy shared by the workers and the HTTP surface."""

from __future__ import annotations


class AutobizError(Exception):
    """Base error. ``status`` is the HTTP status the API layer responds with."""

    status: int = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        if status is not None:
            self.status = status


class NotFoundError(AutobizError):
    """A referenced row (project, phase, deliverable, strategy) does not exist."""

    status = 404


class ConflictError(AutobizError):
    """The requested transition is not allowed from the current state."""

    status = 409


class ValidationError(AutobizError):
    """Request parameters are missing or invalid."""

    status = 400


class ConfigurationError(AutobizError):
    """A required setting or collaborator is not configured."""

    status = 500


class CollaboratorError(AutobizError):
    """An external collaborator (executor, broker, gateway) reported failure."""

    status = 502
