"""Failure taxonomy shared by the stores, the lifecycle engine and the API.

The HTTP layer maps each class to a status code; nothing below the API knows
about HTTP.
"""


class LibraryError(Exception):
    """Base class for every expected failure of a library operation."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(LibraryError, LookupError):
    """A referenced book, student, request, loan or message does not exist."""


class Conflict(LibraryError, ValueError):
    """Illegal state transition or duplicate pending request."""


class Unavailable(LibraryError):
    """No copies of the book are left to issue."""


class Unauthorized(LibraryError):
    """Missing, invalid or expired credential."""


class Forbidden(LibraryError):
    """Authenticated, but the role or ownership does not allow the operation."""


class Inconsistent(LibraryError):
    """Referential integrity is broken (e.g. a loan points at a deleted book)."""
