"""Exception taxonomy for the desk reservation service.

Every failure the core can report is one of these classes. The HTTP layer
maps each class to a status code and a user-facing message; nothing below
the HTTP layer knows about status codes.
"""

from typing import Optional


class DeskbookError(Exception):
    """Base class for all service errors."""

    status_code = 500
    public_message: Optional[str] = None

    def user_message(self) -> str:
        return self.public_message or str(self)


class InvalidRequest(DeskbookError):
    """Missing or inconsistent input. Raised before any store access."""

    status_code = 400


class NotFound(DeskbookError):
    """A layout path or booking id does not resolve."""

    status_code = 404


class Conflict(DeskbookError):
    """The desk is already booked for an overlapping interval."""

    status_code = 409
    public_message = "Desk no longer available, please re-select."


class Forbidden(DeskbookError):
    """The caller may not perform this action."""

    status_code = 403


class StoreError(DeskbookError):
    """Transport or permission failure reported by the document store."""

    status_code = 503
    public_message = "The booking store is temporarily unavailable. Please try again."


class AuthError(DeskbookError):
    """Identity provider failure, tagged with a machine-readable code."""

    status_code = 401

    INVALID_CREDENTIALS = "invalid-credentials"
    EMAIL_IN_USE = "email-in-use"
    WEAK_PASSWORD = "weak-password"
    OPERATION_NOT_ALLOWED = "operation-not-allowed"

    _MESSAGES = {
        INVALID_CREDENTIALS: "Invalid email or password.",
        EMAIL_IN_USE: "This email is already in use. Try signing in.",
        WEAK_PASSWORD: "The password is too weak.",
        OPERATION_NOT_ALLOWED: "This sign-in method is not enabled.",
    }

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        super().__init__(message or self._MESSAGES.get(code, code))
        self.code = code
