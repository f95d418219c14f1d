"""Passline error taxonomy.

Every error raised by the client derives from PasslineError and carries a
human readable ``message`` plus a short machine readable ``code``.

    PasslineError
    ├── TransportError            connect / DNS / TLS failures
    │   └── RequestTimeoutError   connect, read, write or pool timeout
    ├── ApiError                  non-2xx response from the server
    │   └── InvalidCredentialsError
    ├── SessionRejectedError      server no longer accepts the session
    ├── MalformedResponseError    well-formed payload expected, got garbage
    ├── ProtocolMisuseError       challenge mismatch, call out of order
    └── AuthenticatorError        platform authenticator reported failure
        └── AuthenticatorCancelledError
"""

from __future__ import annotations


class PasslineError(Exception):
    """Base class for all Passline errors."""

    code = "PASSLINE_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class TransportError(PasslineError):
    """The request never produced an HTTP response."""

    code = "TRANSPORT_ERROR"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Cannot reach {url}: {reason}")
        self.url = url
        self.reason = reason


class RequestTimeoutError(TransportError):
    """The request exceeded one of the configured timeouts."""

    code = "REQUEST_TIMEOUT"


class ApiError(PasslineError):
    """The server answered with a non-2xx status."""

    code = "API_ERROR"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidCredentialsError(ApiError):
    """The password step was refused; login must restart from the username."""

    code = "INVALID_CREDENTIALS"


class SessionRejectedError(PasslineError):
    """The server explicitly invalidated the current session."""

    code = "SESSION_REJECTED"

    def __init__(self, message: str = "Signed out by server") -> None:
        super().__init__(message)


class MalformedResponseError(PasslineError):
    """A payload that must be well formed could not be decoded."""

    code = "MALFORMED_RESPONSE"


class ProtocolMisuseError(PasslineError):
    """An operation was called out of order or with a stale challenge."""

    code = "PROTOCOL_MISUSE"


class AuthenticatorError(PasslineError):
    """The platform authenticator failed to produce a credential."""

    code = "AUTHENTICATOR_ERROR"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class AuthenticatorCancelledError(AuthenticatorError):
    """The user dismissed the authenticator prompt."""

    code = "AUTHENTICATOR_CANCELLED"

    def __init__(self, message: str = "Operation cancelled by user") -> None:
        super().__init__(message)


def format_error_for_user(error: BaseException) -> str:
    """Render any exception as a single line suitable for the terminal."""
    if isinstance(error, PasslineError):
        return error.message

    message = str(error).strip()
    lower = message.lower()
    if "timed out" in lower or "timeout" in lower:
        return "The server did not respond in time. Please try again."
    if "refused" in lower:
        return "Connection refused. Is the server running?"
    if "ssl" in lower or "certificate" in lower:
        return f"TLS error: {message}"
    if not message:
        return type(error).__name__
    return message
