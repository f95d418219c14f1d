"""Tests for the authentication server API client."""

from __future__ import annotations

import json

import httpx
import pytest

from passline.api.client import AuthApiClient
from passline.core.config import TimeoutConfig
from passline.core.exceptions import (
    ApiError,
    InvalidCredentialsError,
    MalformedResponseError,
    RequestTimeoutError,
    SessionRejectedError,
    TransportError,
)
from passline.protocol.types import AssertionResponse, AttestationResponse, Credential

BASE_URL = "https://auth.test"

CREATION_OPTIONS = {
    "user": {"id": "dXNlcg", "name": "alice"},
    "challenge": "YzE",
    "pubKeyCredParams": [{"type": "public-key", "alg": -7}],
}


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def make_client(handler) -> AuthApiClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AuthApiClient(BASE_URL, http_client=http_client)


def rotated(session_id: str, status: int = 200, **kwargs) -> httpx.Response:
    headers = [("set-cookie", f"connect.sid={session_id}; Path=/; HttpOnly")]
    return httpx.Response(status, headers=headers, **kwargs)


class TestClientSetup:
    """Test client construction."""

    def test_strips_trailing_slash(self):
        client = AuthApiClient("https://auth.test/")
        assert client.base_url == "https://auth.test"

    @pytest.mark.asyncio
    async def test_owned_client_created_lazily(self):
        """Test the client builds its own httpx client with configured timeouts."""
        client = AuthApiClient(
            BASE_URL, timeouts=TimeoutConfig(connect_timeout=1.0, read_timeout=2.0)
        )
        assert client._http_client is None
        http_client = client.http_client
        assert http_client.timeout.connect == 1.0
        assert http_client.timeout.read == 2.0
        assert http_client.follow_redirects is False
        await client.aclose()
        assert client._http_client is None

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        """Test aclose leaves an injected httpx client open."""
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(Recorder()))
        async with AuthApiClient(BASE_URL, http_client=http_client):
            pass
        assert http_client.is_closed is False
        await http_client.aclose()


class TestUsernameAndPassword:
    """Test the username and password steps."""

    @pytest.mark.asyncio
    async def test_username_returns_session(self):
        """Test /username posts the name and returns the new session id."""
        recorder = Recorder(rotated("s1", json={}))
        client = make_client(recorder)

        result = await client.username("alice")

        assert result.session_id == "s1"
        assert recorder.last.method == "POST"
        assert recorder.last.url == "https://auth.test/username"
        assert json.loads(recorder.last.content) == {"username": "alice"}
        assert "cookie" not in recorder.last.headers

    @pytest.mark.asyncio
    async def test_username_without_cookie_raises(self):
        """Test a /username response without the session cookie is malformed."""
        client = make_client(Recorder(httpx.Response(200, json={})))
        with pytest.raises(MalformedResponseError, match="connect.sid"):
            await client.username("alice")

    @pytest.mark.asyncio
    async def test_password_sends_session_cookie(self):
        """Test /password sends the session cookie and reads the rotated one."""
        recorder = Recorder(rotated("s2", json={}))
        client = make_client(recorder)

        result = await client.password("s1", "hunter2")

        assert result.session_id == "s2"
        assert recorder.last.headers["cookie"] == "connect.sid=s1"
        assert json.loads(recorder.last.content) == {"password": "hunter2"}

    @pytest.mark.asyncio
    async def test_password_without_rotation(self):
        """Test no set-cookie means no new session id."""
        client = make_client(Recorder(httpx.Response(200, json={})))
        result = await client.password("s1", "hunter2")
        assert result.session_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403])
    async def test_password_rejected(self, status):
        """Test refusal statuses on /password raise InvalidCredentialsError."""
        client = make_client(Recorder(httpx.Response(status, json={"error": "Invalid password"})))

        with pytest.raises(InvalidCredentialsError) as exc_info:
            await client.password("s1", "wrong")

        assert exc_info.value.status == status
        assert exc_info.value.message == "Error calling /password; Invalid password"


class TestErrorMapping:
    """Test non-2xx responses on the other endpoints."""

    @pytest.mark.asyncio
    async def test_401_rejects_session(self):
        """Test 401 outside /password means the session is gone."""
        client = make_client(Recorder(httpx.Response(401, json={"error": "Unauthorized"})))
        with pytest.raises(SessionRejectedError):
            await client.get_keys("s1")

    @pytest.mark.asyncio
    async def test_server_error_message(self):
        """Test the server's error string is surfaced."""
        client = make_client(Recorder(httpx.Response(500, json={"error": "db down"})))

        with pytest.raises(ApiError) as exc_info:
            await client.register_request("s1")

        assert exc_info.value.status == 500
        assert exc_info.value.message == "Error calling /registerRequest; db down"

    @pytest.mark.asyncio
    async def test_non_string_error_is_unknown(self):
        client = make_client(Recorder(httpx.Response(400, json={"error": {"code": 7}})))
        with pytest.raises(ApiError, match="Unknown"):
            await client.get_keys("s1")

    @pytest.mark.asyncio
    async def test_unparseable_error_body(self):
        """Test a non-JSON error body falls back to the status line."""
        client = make_client(Recorder(httpx.Response(502, text="<html>bad gateway</html>")))
        with pytest.raises(ApiError, match="HTTP 502 Bad Gateway"):
            await client.get_keys("s1")

    @pytest.mark.asyncio
    async def test_invalid_json_success_body(self):
        client = make_client(Recorder(httpx.Response(200, text="not json")))
        with pytest.raises(MalformedResponseError):
            await client.get_keys("s1")

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test httpx timeouts become RequestTimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(RequestTimeoutError):
            await make_client(handler).get_keys("s1")

    @pytest.mark.asyncio
    async def test_connect_error(self):
        """Test connection failures become TransportError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            await make_client(handler).get_keys("s1")

        assert not isinstance(exc_info.value, RequestTimeoutError)
        assert exc_info.value.url == "https://auth.test/getKeys"


class TestCredentialEndpoints:
    """Test key listing, registration and sign-in endpoints."""

    @pytest.mark.asyncio
    async def test_get_keys(self):
        recorder = Recorder(
            httpx.Response(200, json={"credentials": [{"credId": "a", "publicKey": "pk"}]})
        )
        result = await make_client(recorder).get_keys("s1")
        assert result.data == [Credential("a", "pk")]
        assert result.session_id is None

    @pytest.mark.asyncio
    async def test_register_request(self):
        """Test /registerRequest sends client policy and decodes options."""
        recorder = Recorder(rotated("s2", json=CREATION_OPTIONS))

        result = await make_client(recorder).register_request("s1")

        params, challenge = result.data
        assert challenge == "YzE"
        assert params.challenge == b"c1"
        assert result.session_id == "s2"
        assert json.loads(recorder.last.content) == {
            "attestation": "none",
            "authenticatorSelection": {
                "authenticatorAttachment": "platform",
                "userVerification": "required",
            },
        }

    @pytest.mark.asyncio
    async def test_register_response_sends_challenge_cookie(self):
        """Test the challenge travels as a cookie next to the session."""
        recorder = Recorder(httpx.Response(200, json={"credentials": []}))
        attestation = AttestationResponse(b"\x01", b"{}", b"\xa0")

        result = await make_client(recorder).register_response("s1", "YzE", attestation)

        assert result.data == []
        assert recorder.last.headers["cookie"] == "connect.sid=s1; challenge=YzE"
        body = json.loads(recorder.last.content)
        assert body["rawId"] == "AQ"
        assert body["response"]["attestationObject"] == "oA"

    @pytest.mark.asyncio
    async def test_remove_key_query(self):
        recorder = Recorder(httpx.Response(200, json={}))
        await make_client(recorder).remove_key("s1", "cred-1")
        assert recorder.last.url.params["credId"] == "cred-1"
        assert recorder.last.url.path == "/removeKey"

    @pytest.mark.asyncio
    async def test_signin_request_with_and_without_credential(self):
        """Test credId is only sent when a credential is named."""
        recorder = Recorder(
            httpx.Response(200, json={"challenge": "YzI"}),
            httpx.Response(200, json={"challenge": "YzM"}),
        )
        client = make_client(recorder)

        _, first = (await client.signin_request("s1", "cred-1")).data
        _, second = (await client.signin_request("s1")).data

        assert (first, second) == ("YzI", "YzM")
        assert recorder.requests[0].url.params["credId"] == "cred-1"
        assert "credId" not in recorder.requests[1].url.params

    @pytest.mark.asyncio
    async def test_signin_response(self):
        recorder = Recorder(
            rotated("s3", json={"credentials": [{"credId": "AQ", "publicKey": "pk"}]})
        )
        assertion = AssertionResponse(b"\x01", b"{}", b"ad", b"sig")

        result = await make_client(recorder).signin_response("s2", "YzI", assertion)

        assert result.data == [Credential("AQ", "pk")]
        assert result.session_id == "s3"
        assert recorder.last.headers["cookie"] == "connect.sid=s2; challenge=YzI"
        assert json.loads(recorder.last.content)["response"]["userHandle"] == ""

    @pytest.mark.asyncio
    async def test_cookie_jar_not_replayed(self):
        """Test cookies set by one response are not sent on the next request."""
        recorder = Recorder(rotated("s2", json={}), httpx.Response(200, json={}))
        client = make_client(recorder)

        await client.password("s1", "pw")
        await client.remove_key("s9", "cred-1")

        assert recorder.last.headers["cookie"] == "connect.sid=s9"
