"""
Error types raised by the library services.

Each error knows the HTTP status and label it is rendered with; the
handlers in main.py turn them into a uniform JSON body.
"""


class LibraryError(Exception):
    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(LibraryError):
    status_code = 404
    error = "Not Found"

    @classmethod
    def for_id(cls, kind: str, value) -> "NotFound":
        return cls(f"{kind} not found with id: {value}")


class InvalidState(LibraryError):
    status_code = 409
    error = "Invalid State"


class Conflict(LibraryError):
    status_code = 409
    error = "Conflict"


class InvalidArgument(LibraryError):
    status_code = 400
    error = "Bad Request"


class AuthenticationFailed(LibraryError):
    status_code = 401
    error = "Authentication Failed"


class TokenInvalid(AuthenticationFailed):
    error = "Invalid Token"


class TokenExpired(AuthenticationFailed):
    error = "Token Expired"


class AuthorizationDenied(LibraryError):
    status_code = 403
    error = "Forbidden"


class ValidationFailed(LibraryError):
    status_code = 400
    error = "Validation Failed"

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.details = details or []
