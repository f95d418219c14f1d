"""Core."""

from .broadcast import Broadcaster, Subscription
from .config import (
    ApiConfig,
    ClientConfig,
    PasslineConfig,
    StorageConfig,
    TimeoutConfig,
    clear_config,
    get_config,
)
from .exceptions import (
    ApiError,
    AuthenticatorCancelledError,
    AuthenticatorError,
    InvalidCredentialsError,
    MalformedResponseError,
    PasslineError,
    ProtocolMisuseError,
    RequestTimeoutError,
    SessionRejectedError,
    TransportError,
    format_error_for_user,
)

__all__ = [
    "Broadcaster",
    "Subscription",
    "ApiConfig",
    "ClientConfig",
    "PasslineConfig",
    "StorageConfig",
    "TimeoutConfig",
    "clear_config",
    "get_config",
    "PasslineError",
    "TransportError",
    "RequestTimeoutError",
    "ApiError",
    "InvalidCredentialsError",
    "SessionRejectedError",
    "MalformedResponseError",
    "ProtocolMisuseError",
    "AuthenticatorError",
    "AuthenticatorCancelledError",
    "format_error_for_user",
]
