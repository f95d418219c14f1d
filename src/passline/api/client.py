"""Wire-protocol client for the relying-party server.

Each coroutine issues exactly one POST and returns an ApiResult carrying the
decoded payload plus the rotated session id, if the server sent one. The
client holds no sign-in state: the caller passes the session id in and is
responsible for persisting the one that comes back.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
import structlog

from passline.core.config import ApiConfig, PasslineConfig, TimeoutConfig, get_config
from passline.core.exceptions import (
    ApiError,
    InvalidCredentialsError,
    MalformedResponseError,
    RequestTimeoutError,
    SessionRejectedError,
    TransportError,
)
from passline.protocol.codec import (
    decode_creation_options,
    decode_credential_list,
    decode_request_options,
    encode_assertion_response,
    encode_attestation_response,
)
from passline.protocol.messages import (
    ErrorMessage,
    PasswordRequest,
    RegisterRequest,
    UsernameRequest,
)
from passline.protocol.types import (
    AssertionResponse,
    AttestationResponse,
    Credential,
    CredentialCreationParameters,
    CredentialRequestParameters,
)

logger = structlog.get_logger()

T = TypeVar("T")

# Statuses on /password that mean "wrong password, start over".
INVALID_CREDENTIALS_STATUSES = (400, 401, 403)
SESSION_REJECTED_STATUS = 401


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    """Successful server call."""

    data: T
    session_id: str | None = None


class AuthApiClient:
    """Client for the authentication server's JSON endpoints.

    Features:
    - One method per endpoint, one HTTP request per call
    - Session id sent as a cookie, rotated id read back from set-cookie
    - Connect/read/write/pool timeouts, no retries
    - Server error bodies turned into descriptive exceptions
    """

    def __init__(
        self,
        base_url: str,
        *,
        session_cookie: str = "connect.sid",
        timeouts: TimeoutConfig | None = None,
        max_connections: int = 10,
        max_keepalive: int = 5,
        verify_tls: bool = True,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the API client.

        Args:
            base_url: Server base URL, e.g. https://auth.example.com
            session_cookie: Name of the cookie carrying the session id.
            timeouts: Timeout bounds; defaults come from the environment.
            max_connections: Maximum concurrent connections to the server.
            max_keepalive: Maximum keepalive connections to maintain.
            verify_tls: Verify the server certificate.
            http_client: Pre-built client (tests inject one with a mock transport).
        """
        self.base_url = base_url.rstrip("/")
        self.session_cookie = session_cookie
        self._timeouts = timeouts or TimeoutConfig()
        self._max_connections = max_connections
        self._max_keepalive = max_keepalive
        self._verify_tls = verify_tls
        self._owns_client = http_client is None
        self._http_client = http_client

    @classmethod
    def from_config(cls, config: PasslineConfig | None = None) -> AuthApiClient:
        """Build a client from the PASSLINE_* environment configuration."""
        config = config or get_config()
        api: ApiConfig = config.api
        return cls(
            api.base_url,
            session_cookie=api.session_cookie,
            timeouts=config.timeouts,
            max_connections=api.max_connections,
            max_keepalive=api.max_keepalive,
            verify_tls=api.verify_tls,
        )

    def _create_http_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            connect=self._timeouts.connect_timeout,
            read=self._timeouts.read_timeout,
            write=self._timeouts.write_timeout,
            pool=self._timeouts.pool_timeout,
        )
        limits = httpx.Limits(
            max_connections=self._max_connections,
            max_keepalive_connections=self._max_keepalive,
        )
        return httpx.AsyncClient(
            timeout=timeout,
            limits=limits,
            verify=self._verify_tls,
            follow_redirects=False,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = self._create_http_client()
        return self._http_client

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> AuthApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # Endpoints

    async def username(self, username: str) -> ApiResult[None]:
        """Start a sign-in. The returned session id is never None."""
        response = await self._post("/username", UsernameRequest(username=username).to_wire())
        self._raise_for_status(response, "/username")
        session_id = self._session_id_from(response)
        if session_id is None:
            raise MalformedResponseError(
                f"Cookie not found in /username response: {self.session_cookie}"
            )
        return ApiResult(None, session_id)

    async def password(self, session_id: str, password: str) -> ApiResult[None]:
        """Complete the password step.

        Raises:
            InvalidCredentialsError: If the server refused the password.
        """
        response = await self._post(
            "/password",
            PasswordRequest(password=password).to_wire(),
            session_id=session_id,
        )
        self._raise_for_status(response, "/password", password_step=True)
        return ApiResult(None, self._session_id_from(response))

    async def get_keys(self, session_id: str) -> ApiResult[list[Credential]]:
        """List the credentials registered for the signed-in user."""
        response = await self._post("/getKeys", {}, session_id=session_id)
        self._raise_for_status(response, "/getKeys")
        credentials = decode_credential_list(self._json(response, "/getKeys"))
        return ApiResult(credentials, self._session_id_from(response))

    async def register_request(
        self, session_id: str
    ) -> ApiResult[tuple[CredentialCreationParameters, str]]:
        """Ask the server for credential creation options."""
        response = await self._post(
            "/registerRequest",
            RegisterRequest().to_wire(),
            session_id=session_id,
        )
        self._raise_for_status(response, "/registerRequest")
        options = decode_creation_options(self._json(response, "/registerRequest"))
        return ApiResult(options, self._session_id_from(response))

    async def register_response(
        self,
        session_id: str,
        challenge: str,
        attestation: AttestationResponse,
    ) -> ApiResult[list[Credential]]:
        """Send a new credential's attestation, bound to ``challenge``."""
        body = encode_attestation_response(
            attestation.credential_id,
            attestation.client_data_json,
            attestation.attestation_object,
        )
        response = await self._post(
            "/registerResponse", body, session_id=session_id, challenge=challenge
        )
        self._raise_for_status(response, "/registerResponse")
        credentials = decode_credential_list(self._json(response, "/registerResponse"))
        return ApiResult(credentials, self._session_id_from(response))

    async def remove_key(self, session_id: str, credential_id: str) -> ApiResult[None]:
        """Delete a credential on the server. The response body is ignored."""
        response = await self._post(
            "/removeKey", {}, session_id=session_id, params={"credId": credential_id}
        )
        self._raise_for_status(response, "/removeKey")
        return ApiResult(None, self._session_id_from(response))

    async def signin_request(
        self, session_id: str, credential_id: str | None = None
    ) -> ApiResult[tuple[CredentialRequestParameters, str]]:
        """Ask the server for credential request options."""
        params = {"credId": credential_id} if credential_id is not None else None
        response = await self._post("/signinRequest", {}, session_id=session_id, params=params)
        self._raise_for_status(response, "/signinRequest")
        options = decode_request_options(self._json(response, "/signinRequest"))
        return ApiResult(options, self._session_id_from(response))

    async def signin_response(
        self,
        session_id: str,
        challenge: str,
        assertion: AssertionResponse,
    ) -> ApiResult[list[Credential]]:
        """Send an assertion, bound to ``challenge``."""
        body = encode_assertion_response(
            assertion.credential_id,
            assertion.client_data_json,
            assertion.authenticator_data,
            assertion.signature,
            assertion.user_handle,
        )
        response = await self._post(
            "/signinResponse", body, session_id=session_id, challenge=challenge
        )
        self._raise_for_status(response, "/signinResponse")
        credentials = decode_credential_list(self._json(response, "/signinResponse"))
        return ApiResult(credentials, self._session_id_from(response))

    # Plumbing

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        *,
        session_id: str | None = None,
        challenge: str | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers: dict[str, str] = {}
        cookies = []
        if session_id is not None:
            cookies.append(f"{self.session_cookie}={session_id}")
        if challenge is not None:
            cookies.append(f"challenge={challenge}")
        if cookies:
            headers["Cookie"] = "; ".join(cookies)

        start = time.monotonic()
        try:
            response = await self.http_client.post(url, json=body, headers=headers, params=params)
        except httpx.TimeoutException as e:
            logger.warning("Request timed out", endpoint=path, error=str(e))
            raise RequestTimeoutError(url, f"timed out ({type(e).__name__})") from e
        except httpx.RequestError as e:
            logger.warning("Request failed", endpoint=path, error=str(e))
            raise TransportError(url, str(e) or type(e).__name__) from e
        finally:
            # Session identity travels explicitly; never replay the jar.
            self.http_client.cookies.clear()

        logger.debug(
            "API call",
            endpoint=path,
            status=response.status_code,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )
        return response

    def _raise_for_status(
        self, response: httpx.Response, endpoint: str, *, password_step: bool = False
    ) -> None:
        if response.is_success:
            return

        status = response.status_code
        message = f"Error calling {endpoint}; {self._error_message(response)}"

        if password_step and status in INVALID_CREDENTIALS_STATUSES:
            raise InvalidCredentialsError(message, status=status)
        if status == SESSION_REJECTED_STATUS:
            logger.info("Session rejected by server", endpoint=endpoint)
            raise SessionRejectedError()
        raise ApiError(message, status=status)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"HTTP {response.status_code} {response.reason_phrase}".strip()

        if not isinstance(data, dict):
            return "Unknown"
        error = ErrorMessage.model_validate(data).error
        return error if isinstance(error, str) else "Unknown"

    @staticmethod
    def _json(response: httpx.Response, endpoint: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from {endpoint}") from e

    def _session_id_from(self, response: httpx.Response) -> str | None:
        """Find the session cookie among the response's set-cookie headers."""
        prefix = f"{self.session_cookie}="
        for header in response.headers.get_list("set-cookie"):
            header = header.strip()
            if header.startswith(prefix):
                value = header[len(prefix):].split(";", 1)[0].strip()
                return value or None
        return None
