"""Wire message definitions for the authentication server's JSON API.

Field names follow the server's camelCase JSON; Python attributes are
snake_case with aliases. Unknown fields are ignored so that newer servers
can add options without breaking older clients.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from passline.protocol.types import PUBLIC_KEY


class WireModel(BaseModel):
    """Base for all server payloads."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with server field names, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# Options received from the server


class RpEntityMessage(WireModel):
    id: str | None = None
    name: str


class UserEntityMessage(WireModel):
    id: str
    name: str
    display_name: str = Field(default="", alias="displayName")


class CredentialParamMessage(WireModel):
    type: str
    alg: int


class CredentialDescriptorMessage(WireModel):
    id: str
    type: str = PUBLIC_KEY
    transports: list[str] | None = None


class AuthenticatorSelectionMessage(WireModel):
    authenticator_attachment: str | None = Field(default=None, alias="authenticatorAttachment")
    user_verification: str | None = Field(default=None, alias="userVerification")
    resident_key: str | None = Field(default=None, alias="residentKey")


class CreationOptionsMessage(WireModel):
    """PublicKeyCredentialCreationOptions as JSON."""

    rp: RpEntityMessage | None = None
    user: UserEntityMessage
    challenge: str
    pub_key_cred_params: list[CredentialParamMessage] = Field(alias="pubKeyCredParams")
    timeout: float | None = None
    exclude_credentials: list[CredentialDescriptorMessage] = Field(
        default_factory=list, alias="excludeCredentials"
    )
    authenticator_selection: AuthenticatorSelectionMessage | None = Field(
        default=None, alias="authenticatorSelection"
    )
    attestation: str | None = None


class RequestOptionsMessage(WireModel):
    """PublicKeyCredentialRequestOptions as JSON."""

    challenge: str
    rp_id: str | None = Field(default=None, alias="rpId")
    timeout: float | None = None
    allow_credentials: list[CredentialDescriptorMessage] = Field(
        default_factory=list, alias="allowCredentials"
    )
    user_verification: str | None = Field(default=None, alias="userVerification")


class ErrorMessage(WireModel):
    """Error body of a non-2xx response. ``error`` may be any JSON value."""

    error: Any = None


# Requests sent to the server


class UsernameRequest(WireModel):
    username: str


class PasswordRequest(WireModel):
    password: str


class RegisterRequest(WireModel):
    """Body of /registerRequest. The values are client policy, not caller input."""

    attestation: Literal["none"] = "none"
    authenticator_selection: AuthenticatorSelectionMessage = Field(
        default_factory=lambda: AuthenticatorSelectionMessage(
            authenticator_attachment="platform",
            user_verification="required",
        ),
        alias="authenticatorSelection",
    )


class AttestationPayload(WireModel):
    client_data_json: str = Field(alias="clientDataJSON")
    attestation_object: str = Field(alias="attestationObject")


class AssertionPayload(WireModel):
    client_data_json: str = Field(alias="clientDataJSON")
    authenticator_data: str = Field(alias="authenticatorData")
    signature: str
    user_handle: str = Field(default="", alias="userHandle")


class PublicKeyCredentialMessage(WireModel):
    """Body of /registerResponse and /signinResponse."""

    id: str
    type: Literal["public-key"] = PUBLIC_KEY
    raw_id: str = Field(alias="rawId")
    response: AttestationPayload | AssertionPayload
