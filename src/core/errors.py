"""Exception hierarchy shared by the core and its adapters."""

from __future__ import annotations

from typing import Optional


class ErrsieveError(Exception):
    """Base error."""


class ValidationError(ErrsieveError):
    """Raised when an App create/update is rejected for a specific field.

    ``reason`` is one of ``blank``, ``duplicate``, ``immutable`` or ``invalid``.
    """

    def __init__(self, field: str, reason: str, message: Optional[str] = None) -> None:
        self.field = field
        self.reason = reason
        super().__init__(message or f"{field} {reason}")


class ConflictError(ErrsieveError):
    """Raised by storage when a uniqueness or immutability constraint fires."""

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message or f"conflict on {field}")


class StorageError(ErrsieveError):
    """Raised when the persistence layer fails or times out."""


class AppNotFoundError(ErrsieveError):
    """Raised when no App matches the given api key or name."""
