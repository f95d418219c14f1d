"""Tests for the credential codec."""

from __future__ import annotations

import pytest

from passline.core.exceptions import MalformedResponseError
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
    AttestationConveyance,
    AuthenticatorAttachment,
    Credential,
    ResidentKey,
    UserVerification,
)


def creation_options(**overrides):
    options = {
        "rp": {"name": "Example", "id": "example.com"},
        "user": {"id": "dXNlci0x", "name": "alice", "displayName": "Alice"},
        "challenge": "Y2hhbGxlbmdlLTE",
        "pubKeyCredParams": [
            {"type": "public-key", "alg": -7},
            {"type": "public-key", "alg": -257},
        ],
        "timeout": 60000,
        "excludeCredentials": [
            {"id": "AAEC", "type": "public-key", "transports": ["internal"]},
        ],
        "authenticatorSelection": {
            "authenticatorAttachment": "platform",
            "userVerification": "required",
            "residentKey": "preferred",
        },
        "attestation": "none",
    }
    options.update(overrides)
    return options


class TestBase64Url:
    """Test base64url helpers."""

    def test_encode_strips_padding(self):
        """Test encoded output has no '=' padding and uses URL-safe characters."""
        assert b64url_encode(b"\xfb\xff") == "-_8"
        assert b64url_encode(b"a") == "YQ"

    def test_decode_accepts_missing_padding(self):
        """Test unpadded input decodes."""
        assert b64url_decode("YQ") == b"a"
        assert b64url_decode("YQ==") == b"a"
        assert b64url_decode("-_8") == b"\xfb\xff"

    def test_decode_invalid_raises(self):
        """Test invalid input raises MalformedResponseError."""
        with pytest.raises(MalformedResponseError):
            b64url_decode("é")
        with pytest.raises(MalformedResponseError):
            b64url_decode("a")

    @pytest.mark.parametrize("value", ["abcd!!!!", "abc+", "ab/c", "YQ=a", "YQ==="])
    def test_decode_rejects_foreign_characters(self, value):
        """Test characters outside the URL-safe alphabet are not skipped."""
        with pytest.raises(MalformedResponseError):
            b64url_decode(value)


class TestDecodeCreationOptions:
    """Test /registerRequest decoding."""

    def test_full_options(self):
        """Test every field is decoded into the parameters."""
        params, challenge = decode_creation_options(creation_options())

        assert challenge == "Y2hhbGxlbmdlLTE"
        assert params.challenge == b"challenge-1"
        assert params.user.id == b"user-1"
        assert params.user.name == "alice"
        assert params.user.display_name == "Alice"
        assert params.rp is not None
        assert params.rp.id == "example.com"
        assert [a.alg for a in params.algorithms] == [-7, -257]
        assert params.timeout == 60000
        assert params.exclude_credentials[0].id == b"\x00\x01\x02"
        assert params.exclude_credentials[0].transports == ("internal",)
        selection = params.authenticator_selection
        assert selection is not None
        assert selection.authenticator_attachment is AuthenticatorAttachment.PLATFORM
        assert selection.user_verification is UserVerification.REQUIRED
        assert selection.resident_key is ResidentKey.PREFERRED
        assert params.attestation is AttestationConveyance.NONE

    def test_optional_fields_absent(self):
        """Test absent optional fields decode to None or empty."""
        data = creation_options()
        for key in ("rp", "timeout", "excludeCredentials", "authenticatorSelection", "attestation"):
            del data[key]

        params, _ = decode_creation_options(data)

        assert params.rp is None
        assert params.timeout is None
        assert params.exclude_credentials == ()
        assert params.authenticator_selection is None
        assert params.attestation is None

    def test_unknown_fields_ignored(self):
        """Test unknown keys and unknown enum values are tolerated."""
        data = creation_options(extensions={"credProps": True}, attestation="fancy")

        params, _ = decode_creation_options(data)

        assert params.attestation is None

    def test_missing_challenge_raises(self):
        """Test a missing required field raises MalformedResponseError."""
        data = creation_options()
        del data["challenge"]
        with pytest.raises(MalformedResponseError):
            decode_creation_options(data)

    def test_non_object_raises(self):
        """Test a non-object payload raises MalformedResponseError."""
        with pytest.raises(MalformedResponseError):
            decode_creation_options(["not", "an", "object"])


class TestDecodeRequestOptions:
    """Test /signinRequest decoding."""

    def test_request_options(self):
        """Test allow list and user verification are decoded."""
        params, challenge = decode_request_options(
            {
                "challenge": "YWJj",
                "rpId": "example.com",
                "timeout": 30000,
                "allowCredentials": [{"id": "AAEC", "type": "public-key"}],
                "userVerification": "preferred",
            }
        )

        assert challenge == "YWJj"
        assert params.challenge == b"abc"
        assert params.rp_id == "example.com"
        assert params.timeout == 30000
        assert params.allow_credentials[0].id == b"\x00\x01\x02"
        assert params.allow_credentials[0].transports is None
        assert params.user_verification is UserVerification.PREFERRED

    def test_minimal_request_options(self):
        """Test only a challenge is required."""
        params, _ = decode_request_options({"challenge": "YWJj"})
        assert params.allow_credentials == ()
        assert params.user_verification is None

    def test_bad_challenge_raises(self):
        """Test a challenge that is not base64url raises."""
        with pytest.raises(MalformedResponseError):
            decode_request_options({"challenge": "a"})


class TestEncodeResponses:
    """Test /registerResponse and /signinResponse bodies."""

    def test_attestation_body(self):
        """Test the attestation body matches the wire format."""
        body = encode_attestation_response(b"\x00\x01\x02", b"{}", b"\xa0")

        assert body == {
            "id": "AAEC",
            "type": "public-key",
            "rawId": "AAEC",
            "response": {"clientDataJSON": "e30", "attestationObject": "oA"},
        }

    def test_assertion_body(self):
        """Test the assertion body matches the wire format."""
        body = encode_assertion_response(b"\x00\x01\x02", b"{}", b"auth", b"sig", b"user")

        assert body["id"] == body["rawId"] == "AAEC"
        assert body["type"] == "public-key"
        assert body["response"] == {
            "clientDataJSON": "e30",
            "authenticatorData": "YXV0aA",
            "signature": "c2ln",
            "userHandle": "dXNlcg",
        }

    def test_assertion_without_user_handle(self):
        """Test a missing user handle is sent as an empty string."""
        body = encode_assertion_response(b"\x01", b"{}", b"a", b"s")
        assert body["response"]["userHandle"] == ""


class TestDecodeCredentialList:
    """Test credential list decoding."""

    def test_preserves_order(self):
        """Test entries are returned in server order."""
        credentials = decode_credential_list(
            {
                "credentials": [
                    {"credId": "b", "publicKey": "pk-b"},
                    {"credId": "a", "publicKey": "pk-a"},
                ]
            }
        )
        assert credentials == [Credential("b", "pk-b"), Credential("a", "pk-a")]

    def test_empty_list(self):
        """Test an empty array decodes to an empty list."""
        assert decode_credential_list({"credentials": []}) == []

    def test_incomplete_entries_dropped(self):
        """Test entries missing credId or publicKey are skipped."""
        credentials = decode_credential_list(
            {
                "credentials": [
                    {"credId": "a"},
                    {"publicKey": "pk"},
                    "garbage",
                    {"credId": "c", "publicKey": "pk-c", "extra": 1},
                ]
            }
        )
        assert credentials == [Credential("c", "pk-c")]

    def test_separator_in_fields_dropped(self):
        """Test entries containing the cache separator are skipped."""
        credentials = decode_credential_list(
            {
                "credentials": [
                    {"credId": "a", "publicKey": "pk;with;semis"},
                    {"credId": "b;c", "publicKey": "pk"},
                    {"credId": "d", "publicKey": "pk-d"},
                ]
            }
        )
        assert credentials == [Credential("d", "pk-d")]

    def test_missing_array_raises(self):
        """Test a body without a credentials array raises."""
        with pytest.raises(MalformedResponseError, match="Cannot parse credentials"):
            decode_credential_list({})
        with pytest.raises(MalformedResponseError):
            decode_credential_list({"credentials": "nope"})
