"""Contract for the platform authenticator.

The authenticator is an external capability (TouchID, Windows Hello, a
security key behind an OS API). Passline only shapes its input and consumes
its output; it never performs the cryptographic ceremony itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union, runtime_checkable

from passline.core.exceptions import AuthenticatorCancelledError, AuthenticatorError
from passline.protocol.types import (
    AssertionResponse,
    AttestationResponse,
    CredentialCreationParameters,
    CredentialRequestParameters,
)


@dataclass(frozen=True)
class AuthenticatorSuccess:
    """The authenticator produced a credential response."""

    response: AttestationResponse | AssertionResponse


@dataclass(frozen=True)
class AuthenticatorFailure:
    """The authenticator reported an error (e.g. NotAllowedError)."""

    message: str
    code: str | None = None


@dataclass(frozen=True)
class AuthenticatorCancelled:
    """The user dismissed the prompt."""


AuthenticatorOutcome = Union[AuthenticatorSuccess, AuthenticatorFailure, AuthenticatorCancelled]


@runtime_checkable
class PlatformAuthenticator(Protocol):
    """Anything that can run a WebAuthn ceremony.

    ``invoke`` receives creation parameters for registration and request
    parameters for assertion, and must answer with an attestation or an
    assertion response respectively.
    """

    async def invoke(
        self, parameters: CredentialCreationParameters | CredentialRequestParameters
    ) -> AuthenticatorOutcome: ...


def unwrap_attestation(outcome: AuthenticatorOutcome) -> AttestationResponse:
    """Return the attestation or raise the matching AuthenticatorError."""
    response = _unwrap(outcome)
    if not isinstance(response, AttestationResponse):
        raise AuthenticatorError("Authenticator returned an assertion for a registration")
    return response


def unwrap_assertion(outcome: AuthenticatorOutcome) -> AssertionResponse:
    """Return the assertion or raise the matching AuthenticatorError."""
    response = _unwrap(outcome)
    if not isinstance(response, AssertionResponse):
        raise AuthenticatorError("Authenticator returned an attestation for a sign-in")
    return response


def _unwrap(outcome: AuthenticatorOutcome) -> AttestationResponse | AssertionResponse:
    if isinstance(outcome, AuthenticatorSuccess):
        return outcome.response
    if isinstance(outcome, AuthenticatorCancelled):
        raise AuthenticatorCancelledError()
    if isinstance(outcome, AuthenticatorFailure):
        raise AuthenticatorError(outcome.message, error_code=outcome.code)
    raise TypeError(f"Unexpected authenticator outcome: {outcome!r}")
