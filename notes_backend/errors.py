class UserError(Exception):
    """Base class for errors whose message is shown to the client.

    Messages must not contain sensitive information (hashes, session ids,
    whether an email address is registered).
    """

    status_code = 400
    error_type = "bad_request"


class Unauthorized(UserError):
    """No valid session, or the session points at an unknown account."""

    status_code = 401
    error_type = "unauthorized"

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class InvalidCredentials(Unauthorized):
    """Login failed. Raised identically for unknown emails and wrong passwords."""

    def __init__(self, message: str = "Invalid email or password") -> None:
        super().__init__(message)


class Forbidden(UserError):
    """Authenticated, but not allowed to perform this action."""

    status_code = 403
    error_type = "forbidden"

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class AccountDisabled(Forbidden):
    def __init__(self, message: str = "User account is disabled") -> None:
        super().__init__(message)


class NoteUnauthorized(Forbidden):
    """The note (or the requested parent note) belongs to another account."""

    def __init__(self, message: str = "Unauthorized to access this note") -> None:
        super().__init__(message)


class ValidationError(UserError):
    """Raised when user input fails validation."""

    status_code = 400
    error_type = "validation_error"


class InvalidParent(ValidationError):
    def __init__(self, message: str = "Invalid parent note") -> None:
        super().__init__(message)


class NotFoundError(UserError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message)


class ConflictError(UserError):
    status_code = 409
    error_type = "conflict"


class DuplicateUsername(ConflictError):
    def __init__(self, message: str = "Username already exists") -> None:
        super().__init__(message)


class DuplicateEmail(ConflictError):
    def __init__(self, message: str = "Email already registered") -> None:
        super().__init__(message)


class PersistenceError(Exception):
    """The database was unreachable, timed out, or rejected a statement."""


class TamperedOrInvalid(Exception):
    """A cookie value failed to decode. Deliberately carries no detail."""
