"""Wire types and the JSON codec for the relying-party protocol."""

from passline.protocol.codec import (
    b64url_decode,
    b64url_encode,
    decode_creation_options,
    decode_credential_list,
    decode_request_options,
    encode_assertion_response,
    encode_attestation_response,
)
from passline.protocol.types import (
    AssertionResponse,
    AttestationConveyance,
    AttestationResponse,
    AuthenticatorAttachment,
    AuthenticatorSelection,
    Credential,
    CredentialAlgorithm,
    CredentialCreationParameters,
    CredentialDescriptor,
    CredentialRequestParameters,
    RelyingParty,
    ResidentKey,
    Session,
    UserEntity,
    UserVerification,
)

__all__ = [
    # Codec
    "b64url_encode",
    "b64url_decode",
    "decode_creation_options",
    "decode_request_options",
    "decode_credential_list",
    "encode_attestation_response",
    "encode_assertion_response",
    # Types
    "Credential",
    "Session",
    "RelyingParty",
    "UserEntity",
    "CredentialAlgorithm",
    "CredentialDescriptor",
    "AuthenticatorSelection",
    "AuthenticatorAttachment",
    "UserVerification",
    "ResidentKey",
    "AttestationConveyance",
    "CredentialCreationParameters",
    "CredentialRequestParameters",
    "AttestationResponse",
    "AssertionResponse",
]
