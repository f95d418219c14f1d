"""Encode/decode between server JSON and authenticator parameters.

All functions are pure. The only error they raise is MalformedResponseError,
and only for input that cannot be interpreted at all.
"""

from __future__ import annotations

import base64
import binascii
import re
from enum import Enum
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from passline.core.exceptions import MalformedResponseError
from passline.protocol.messages import (
    AssertionPayload,
    AttestationPayload,
    AuthenticatorSelectionMessage,
    CreationOptionsMessage,
    CredentialDescriptorMessage,
    PublicKeyCredentialMessage,
    RequestOptionsMessage,
    WireModel,
)
from passline.protocol.types import (
    AttestationConveyance,
    AuthenticatorAttachment,
    AuthenticatorSelection,
    Credential,
    CredentialAlgorithm,
    CredentialCreationParameters,
    CredentialDescriptor,
    CredentialRequestParameters,
    RelyingParty,
    ResidentKey,
    UserEntity,
    UserVerification,
)

logger = structlog.get_logger()

E = TypeVar("E", bound=Enum)
M = TypeVar("M", bound=WireModel)

_B64URL = re.compile(r"[A-Za-z0-9_-]*={0,2}")


def b64url_encode(data: bytes) -> str:
    """Encode bytes as URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64, with or without padding.

    Raises:
        MalformedResponseError: If the value is not valid base64url.
    """
    if not _B64URL.fullmatch(value):
        raise MalformedResponseError(f"Invalid base64url value: {value!r}")
    try:
        padded = value + "=" * (-len(value) % 4)
        return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedResponseError(f"Invalid base64url value: {value!r}") from e


def _validate(model: type[M], data: Any, what: str) -> M:
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Expected a JSON object for {what}")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedResponseError(f"Invalid {what}: {fields}") from e


def _enum_or_none(enum: type[E], value: str | None) -> E | None:
    if value is None:
        return None
    try:
        return enum(value)
    except ValueError:
        logger.debug("Ignoring unknown option value", option=enum.__name__, value=value)
        return None


def _decode_descriptors(
    descriptors: list[CredentialDescriptorMessage],
) -> tuple[CredentialDescriptor, ...]:
    return tuple(
        CredentialDescriptor(
            id=b64url_decode(d.id),
            type=d.type,
            transports=tuple(d.transports) if d.transports is not None else None,
        )
        for d in descriptors
    )


def _decode_selection(
    selection: AuthenticatorSelectionMessage | None,
) -> AuthenticatorSelection | None:
    if selection is None:
        return None
    return AuthenticatorSelection(
        authenticator_attachment=_enum_or_none(
            AuthenticatorAttachment, selection.authenticator_attachment
        ),
        user_verification=_enum_or_none(UserVerification, selection.user_verification),
        resident_key=_enum_or_none(ResidentKey, selection.resident_key),
    )


def decode_creation_options(data: Any) -> tuple[CredentialCreationParameters, str]:
    """Decode /registerRequest output.

    Returns:
        The creation parameters and the challenge exactly as the server sent
        it, to be echoed back in /registerResponse.
    """
    message = _validate(CreationOptionsMessage, data, "credential creation options")
    params = CredentialCreationParameters(
        user=UserEntity(
            id=b64url_decode(message.user.id),
            name=message.user.name,
            display_name=message.user.display_name,
        ),
        challenge=b64url_decode(message.challenge),
        algorithms=tuple(
            CredentialAlgorithm(alg=p.alg, type=p.type) for p in message.pub_key_cred_params
        ),
        rp=RelyingParty(name=message.rp.name, id=message.rp.id) if message.rp else None,
        timeout=message.timeout,
        exclude_credentials=_decode_descriptors(message.exclude_credentials),
        authenticator_selection=_decode_selection(message.authenticator_selection),
        attestation=_enum_or_none(AttestationConveyance, message.attestation),
    )
    return params, message.challenge


def decode_request_options(data: Any) -> tuple[CredentialRequestParameters, str]:
    """Decode /signinRequest output into request parameters and challenge."""
    message = _validate(RequestOptionsMessage, data, "credential request options")
    params = CredentialRequestParameters(
        challenge=b64url_decode(message.challenge),
        rp_id=message.rp_id,
        timeout=message.timeout,
        allow_credentials=_decode_descriptors(message.allow_credentials),
        user_verification=_enum_or_none(UserVerification, message.user_verification),
    )
    return params, message.challenge


def encode_attestation_response(
    credential_id: bytes,
    client_data_json: bytes,
    attestation_object: bytes,
) -> dict[str, Any]:
    """Build the /registerResponse body."""
    raw_id = b64url_encode(credential_id)
    return PublicKeyCredentialMessage(
        id=raw_id,
        raw_id=raw_id,
        response=AttestationPayload(
            client_data_json=b64url_encode(client_data_json),
            attestation_object=b64url_encode(attestation_object),
        ),
    ).to_wire()


def encode_assertion_response(
    credential_id: bytes,
    client_data_json: bytes,
    authenticator_data: bytes,
    signature: bytes,
    user_handle: bytes | None = None,
) -> dict[str, Any]:
    """Build the /signinResponse body. A missing user handle is sent as ""."""
    raw_id = b64url_encode(credential_id)
    return PublicKeyCredentialMessage(
        id=raw_id,
        raw_id=raw_id,
        response=AssertionPayload(
            client_data_json=b64url_encode(client_data_json),
            authenticator_data=b64url_encode(authenticator_data),
            signature=b64url_encode(signature),
            user_handle=b64url_encode(user_handle) if user_handle is not None else "",
        ),
    ).to_wire()


def decode_credential_list(data: Any) -> list[Credential]:
    """Read the ``credentials`` array of a server response.

    Entries lacking a string ``credId`` or ``publicKey`` are dropped, as are
    entries containing the ``;`` the local cache uses as its separator.

    Raises:
        MalformedResponseError: If there is no ``credentials`` array at all.
    """
    if not isinstance(data, dict) or not isinstance(data.get("credentials"), list):
        raise MalformedResponseError("Cannot parse credentials")

    credentials: list[Credential] = []
    for entry in data["credentials"]:
        if not isinstance(entry, dict):
            continue
        cred_id = entry.get("credId")
        public_key = entry.get("publicKey")
        if not isinstance(cred_id, str) or not isinstance(public_key, str):
            logger.debug("Dropping incomplete credential entry", keys=sorted(entry))
        elif ";" in cred_id or ";" in public_key:
            logger.warning("Dropping credential entry with a reserved character", cred_id=cred_id)
        else:
            credentials.append(Credential(id=cred_id, public_key=public_key))
    return credentials
