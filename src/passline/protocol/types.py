"""Structured WebAuthn parameter and result types.

These are the decoded forms handed to (and received from) the platform
authenticator. Binary fields are raw bytes; the codec owns base64url.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

PUBLIC_KEY = "public-key"


class AuthenticatorAttachment(Enum):
    """Authenticator attachment modality."""

    PLATFORM = "platform"  # Built-in (TouchID, Windows Hello)
    CROSS_PLATFORM = "cross-platform"  # USB/NFC key


class UserVerification(Enum):
    """User verification requirement."""

    REQUIRED = "required"
    PREFERRED = "preferred"
    DISCOURAGED = "discouraged"


class ResidentKey(Enum):
    """Resident key (discoverable credential) requirement."""

    REQUIRED = "required"
    PREFERRED = "preferred"
    DISCOURAGED = "discouraged"


class AttestationConveyance(Enum):
    """Attestation conveyance preference."""

    NONE = "none"
    INDIRECT = "indirect"
    DIRECT = "direct"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class Credential:
    """A credential registered on the server for the current user."""

    id: str
    """Credential ID, base64url as sent by the server."""

    public_key: str
    """Public key, opaque string as sent by the server."""


@dataclass(frozen=True)
class RelyingParty:
    """Relying party entity."""

    name: str
    id: str | None = None


@dataclass(frozen=True)
class UserEntity:
    """User entity for credential creation."""

    id: bytes
    name: str
    display_name: str = ""


@dataclass(frozen=True)
class CredentialAlgorithm:
    """One entry of pubKeyCredParams."""

    alg: int
    type: str = PUBLIC_KEY


@dataclass(frozen=True)
class CredentialDescriptor:
    """Reference to an existing credential (exclude/allow lists)."""

    id: bytes
    type: str = PUBLIC_KEY
    transports: tuple[str, ...] | None = None


@dataclass(frozen=True)
class AuthenticatorSelection:
    """Authenticator selection criteria."""

    authenticator_attachment: AuthenticatorAttachment | None = None
    user_verification: UserVerification | None = None
    resident_key: ResidentKey | None = None


@dataclass(frozen=True)
class CredentialCreationParameters:
    """Input for a registration ceremony on the platform authenticator."""

    user: UserEntity
    challenge: bytes
    algorithms: tuple[CredentialAlgorithm, ...]
    rp: RelyingParty | None = None
    timeout: float | None = None
    """Ceremony timeout in milliseconds, as sent by the server."""
    exclude_credentials: tuple[CredentialDescriptor, ...] = ()
    authenticator_selection: AuthenticatorSelection | None = None
    attestation: AttestationConveyance | None = None


@dataclass(frozen=True)
class CredentialRequestParameters:
    """Input for an assertion ceremony on the platform authenticator."""

    challenge: bytes
    rp_id: str | None = None
    timeout: float | None = None
    """Ceremony timeout in milliseconds, as sent by the server."""
    allow_credentials: tuple[CredentialDescriptor, ...] = ()
    user_verification: UserVerification | None = None


@dataclass(frozen=True)
class AttestationResponse:
    """Authenticator output of a registration ceremony."""

    credential_id: bytes
    client_data_json: bytes
    attestation_object: bytes


@dataclass(frozen=True)
class AssertionResponse:
    """Authenticator output of an assertion ceremony."""

    credential_id: bytes
    client_data_json: bytes
    authenticator_data: bytes
    signature: bytes
    user_handle: bytes | None = None


@dataclass(frozen=True)
class Session:
    """Persisted sign-in identity."""

    username: str
    session_id: str | None = None

