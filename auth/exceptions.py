"""Typed exceptions for auth failures.

Every class carries the HTTP status and machine-readable code the API layer
renders, so route handlers never translate errors by hand. Messages are
written to be safe for clients: they never echo whether an email exists or
any part of a credential.
"""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""

    status_code = 400
    code = "auth_error"
    default_message = "Authentication error."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConflictError(AuthError):
    """Email is already registered. The one intentional existence reveal."""

    status_code = 409
    code = "conflict"
    default_message = "Email already registered"


class UnauthorizedError(AuthError):
    """
    Bad credentials or an unusable bearer token.

    Login raises this with the same message for unknown email and wrong
    password so the two cases cannot be told apart.
    """

    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class TokenInvalidError(UnauthorizedError):
    """Bad signature, malformed structure, or missing claims."""


class TokenExpiredError(UnauthorizedError):
    """Token was genuine but its exp has passed. Client should log in again."""

    code = "token_expired"
    default_message = "Token expired. Please log in again."


class TokenRevokedError(UnauthorizedError):
    """Token was revoked (logout) before its natural expiry."""


class InvalidError(AuthError):
    """Malformed input or an unknown, expired, or used reset token."""

    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request"


class NotFoundError(AuthError):
    """An authenticated-context lookup missed (should not happen legitimately)."""

    status_code = 404
    code = "not_found"
    default_message = "Not found"


class InternalError(AuthError):
    """Store or transport failure."""

    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."


class NotificationError(InternalError):
    """Outbound email could not be delivered."""

    code = "notification_failed"
    default_message = "Notification could not be delivered."
