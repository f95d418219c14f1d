"""AuthOrchestrator - sequences the sign-in flow.

Owns the pending challenge, the request lock, the state machine and the
credential cache, and drives them from AuthApiClient results:

    orchestrator = AuthOrchestrator.from_config()
    async with orchestrator:
        await orchestrator.username("alice")
        await orchestrator.password("hunter2")
        await orchestrator.register(my_authenticator)

Rules:
- One pending challenge at most; a new request invalidates the old one.
- A response must echo the challenge of the latest matching request.
- A rotated session id is persisted before the next call is issued.
- SessionRejectedError from any call signs the user out.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog

from passline.api.client import AuthApiClient
from passline.auth.authenticator import (
    PlatformAuthenticator,
    unwrap_assertion,
    unwrap_attestation,
)
from passline.auth.state import (
    SessionStateMachine,
    SignedIn,
    SignedOut,
    SignInError,
    SignInState,
    SigningIn,
)
from passline.core.broadcast import Subscription
from passline.core.config import PasslineConfig, get_config
from passline.core.exceptions import (
    AuthenticatorError,
    InvalidCredentialsError,
    MalformedResponseError,
    PasslineError,
    ProtocolMisuseError,
    SessionRejectedError,
)
from passline.protocol.codec import b64url_encode
from passline.protocol.types import (
    AssertionResponse,
    AttestationResponse,
    Credential,
    CredentialCreationParameters,
    CredentialRequestParameters,
    Session,
)
from passline.storage.credentials import CREDENTIALS_KEY, CredentialStore, encode_credentials
from passline.storage.prefs import JsonFilePreferenceStore, PreferenceEditor, PreferenceStore

logger = structlog.get_logger()

T = TypeVar("T")

USERNAME_KEY = "username"
SESSION_ID_KEY = "session_id"
LOCAL_CREDENTIAL_ID_KEY = "local_credential_id"


class ChallengeKind(Enum):
    """Which ceremony a challenge belongs to."""

    REGISTRATION = "registration"
    ASSERTION = "assertion"


@dataclass(frozen=True)
class PendingChallenge:
    """The one in-flight challenge."""

    kind: ChallengeKind
    challenge: str


class AuthOrchestrator:
    """Façade over the API client, local store and sign-in state.

    Every operation runs as its own task and is awaited through
    ``asyncio.shield``: a caller that stops waiting does not cancel the
    server call or the persistence that follows it.
    """

    def __init__(
        self,
        api: AuthApiClient,
        prefs: PreferenceStore,
        *,
        buffer_size: int = 16,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            api: Wire client for the authentication server.
            prefs: Persistent store for identity and the credential cache.
            buffer_size: Per-subscriber buffer for state/credential updates.
        """
        self._api = api
        self._prefs = prefs
        self._buffer_size = buffer_size
        self._credentials = CredentialStore(prefs, buffer_size=buffer_size)
        self._machine: SessionStateMachine | None = None
        self._pending: PendingChallenge | None = None
        self._request_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(cls, config: PasslineConfig | None = None) -> AuthOrchestrator:
        """Build an orchestrator backed by the configured server and JSON store."""
        config = config or get_config()
        return cls(
            AuthApiClient.from_config(config),
            JsonFilePreferenceStore(config.storage.store_path),
            buffer_size=config.storage.subscriber_buffer,
        )

    async def start(self) -> None:
        """Load persisted identity and derive the initial state."""
        if self._machine is not None:
            return
        await self._prefs.load()
        username = await self._prefs.get_string(USERNAME_KEY)
        session_id = await self._prefs.get_string(SESSION_ID_KEY)
        self._machine = SessionStateMachine.from_identity(
            username, session_id, buffer_size=self._buffer_size
        )
        await self._credentials.start()
        logger.debug("Orchestrator started", state=type(self._machine.state).__name__)

    async def aclose(self) -> None:
        """Wait for in-flight operations, then release resources."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._api.aclose()
        self._credentials.close()
        if self._machine is not None:
            self._machine.close()

    async def __aenter__(self) -> AuthOrchestrator:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # Read-only views

    @property
    def machine(self) -> SessionStateMachine:
        if self._machine is None:
            raise RuntimeError("AuthOrchestrator.start() has not been called")
        return self._machine

    @property
    def state(self) -> SignInState:
        return self.machine.state

    @property
    def session(self) -> Session | None:
        username = self._prefs.peek_string(USERNAME_KEY)
        if not username:
            return None
        return Session(username=username, session_id=self._prefs.peek_string(SESSION_ID_KEY))

    @property
    def pending_challenge(self) -> PendingChallenge | None:
        return self._pending

    @property
    def local_credential_id(self) -> str | None:
        return self._prefs.peek_string(LOCAL_CREDENTIAL_ID_KEY)

    def observe_state(self) -> Subscription[SignInState]:
        return self.machine.observe()

    def observe_credentials(self) -> Subscription[list[Credential]]:
        return self._credentials.observe()

    async def credentials(self) -> list[Credential]:
        """Cached credential list, in server order."""
        return await self._credentials.current()

    # Operations

    async def username(self, username: str) -> SignInState:
        """Send the username. Moves SignedOut to SigningIn."""
        return await self._run(self._username(username))

    async def password(self, password: str) -> SignInState:
        """Send the password. Moves SigningIn to SignedIn.

        Raises:
            InvalidCredentialsError: After moving to SignInError and clearing
                the local identity; the login must restart.
        """
        return await self._run(self._password(password))

    async def refresh_credentials(self) -> list[Credential]:
        """Fetch the credential list from the server and cache it."""
        return await self._run(self._refresh_credentials())

    async def register_request(self) -> tuple[CredentialCreationParameters, str]:
        """Start a registration. Returns authenticator input and its challenge."""
        return await self._run(self._register_request())

    async def register_response(
        self, challenge: str, attestation: AttestationResponse
    ) -> list[Credential]:
        """Finish a registration with the authenticator's attestation."""
        return await self._run(self._register_response(challenge, attestation))

    async def remove_key(self, credential_id: str) -> list[Credential]:
        """Delete a credential on the server, then refresh the cache."""
        return await self._run(self._remove_key(credential_id))

    async def signin_request(
        self, credential_id: str | None = None
    ) -> tuple[CredentialRequestParameters, str]:
        """Start a credential sign-in. Defaults to this device's credential."""
        return await self._run(self._signin_request(credential_id))

    async def signin_response(
        self, challenge: str, assertion: AssertionResponse
    ) -> list[Credential]:
        """Finish a credential sign-in with the authenticator's assertion."""
        return await self._run(self._signin_response(challenge, assertion))

    async def reauth(self) -> SignInState:
        """Clear cached credentials and return to SigningIn, keeping the session."""
        return await self._run(self._reauth())

    async def sign_out(self) -> SignInState:
        """Forget the user locally. Moves any state to SignedOut."""
        return await self._run(self._sign_out())

    async def register(self, authenticator: PlatformAuthenticator) -> list[Credential]:
        """Run a full registration ceremony against ``authenticator``."""
        parameters, challenge = await self.register_request()
        outcome = await authenticator.invoke(parameters)
        try:
            attestation = unwrap_attestation(outcome)
        except AuthenticatorError as e:
            logger.warning("Registration ceremony failed", error=e.message, code=e.error_code)
            await self._abandon_challenge(challenge)
            raise
        return await self.register_response(challenge, attestation)

    async def signin(
        self, authenticator: PlatformAuthenticator, credential_id: str | None = None
    ) -> list[Credential]:
        """Run a full sign-in ceremony against ``authenticator``."""
        parameters, challenge = await self.signin_request(credential_id)
        outcome = await authenticator.invoke(parameters)
        try:
            assertion = unwrap_assertion(outcome)
        except AuthenticatorError as e:
            logger.warning("Sign-in ceremony failed", error=e.message, code=e.error_code)
            await self._abandon_challenge(challenge)
            raise
        return await self.signin_response(challenge, assertion)

    # Implementation

    async def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return await asyncio.shield(task)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Operation failed", error=str(task.exception()))

    async def _call(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await an API call; a session rejection signs the user out."""
        try:
            return await coro
        except SessionRejectedError as e:
            await self._force_sign_out(e.message)
            raise

    async def _require_session(self, trigger: str, *allowed: type[SignInState]) -> tuple[str, str]:
        self.machine.require(trigger, *allowed)
        username = await self._prefs.get_string(USERNAME_KEY)
        session_id = await self._prefs.get_string(SESSION_ID_KEY)
        if not username or not session_id:
            raise ProtocolMisuseError(f"Cannot apply '{trigger}' without a session")
        return username, session_id

    async def _persist(
        self,
        session_id: str | None,
        credentials: list[Credential] | None = None,
        local_credential_id: str | None = None,
    ) -> None:
        """Write a call's results in one batch.

        The rotated session id is saved even when the credentials cannot be.
        """
        editor = PreferenceEditor()
        if session_id is not None:
            editor.put_string(SESSION_ID_KEY, session_id)
        if credentials is not None:
            try:
                editor.put_string_set(CREDENTIALS_KEY, encode_credentials(credentials))
            except ValueError as e:
                await self._prefs.commit(editor)
                raise MalformedResponseError(str(e)) from e
        if local_credential_id is not None:
            editor.put_string(LOCAL_CREDENTIAL_ID_KEY, local_credential_id)
        await self._prefs.commit(editor)

    async def _clear_identity(self) -> None:
        async with self._prefs.edit() as editor:
            editor.remove(USERNAME_KEY)
            editor.remove(SESSION_ID_KEY)
            editor.remove(CREDENTIALS_KEY)
        self._pending = None

    async def _force_sign_out(self, message: str) -> None:
        logger.warning("Signed out by server", reason=message)
        await self._clear_identity()
        self.machine.session_rejected(message)

    def _consume_challenge(self, kind: ChallengeKind, challenge: str) -> None:
        """Check and clear the pending challenge. On mismatch nothing changes."""
        pending = self._pending
        if pending is None:
            raise ProtocolMisuseError(f"No pending {kind.value} challenge")
        if pending.kind is not kind:
            raise ProtocolMisuseError(
                f"Pending challenge belongs to {pending.kind.value}, not {kind.value}"
            )
        if pending.challenge != challenge:
            raise ProtocolMisuseError(f"Challenge does not match the pending {kind.value}")
        self._pending = None

    async def _abandon_challenge(self, challenge: str) -> None:
        async with self._request_lock:
            if self._pending is not None and self._pending.challenge == challenge:
                self._pending = None

    async def _username(self, username: str) -> SignInState:
        async with self._request_lock:
            self.machine.require("username", SignedOut, SignInError)
            result = await self._call(self._api.username(username))
            async with self._prefs.edit() as editor:
                editor.put_string(USERNAME_KEY, username)
                editor.put_string(SESSION_ID_KEY, result.session_id)
            logger.info("Username accepted", username=username)
            return self.machine.username_accepted(username)

    async def _password(self, password: str) -> SignInState:
        async with self._request_lock:
            username, session_id = await self._require_session("password", SigningIn)
            try:
                result = await self._call(self._api.password(session_id, password))
            except InvalidCredentialsError as e:
                logger.warning("Invalid login credentials", username=username)
                await self._clear_identity()
                self.machine.password_rejected(e.message)
                raise
            await self._persist(result.session_id)
            logger.info("Signed in with password", username=username)
            return self.machine.password_accepted()

    async def _refresh_credentials(self) -> list[Credential]:
        async with self._request_lock:
            _, session_id = await self._require_session("getKeys", SignedIn)
            result = await self._call(self._api.get_keys(session_id))
            await self._persist(result.session_id, credentials=result.data)
            return result.data

    async def _register_request(self) -> tuple[CredentialCreationParameters, str]:
        async with self._request_lock:
            _, session_id = await self._require_session("registerRequest", SignedIn)
            self._pending = None
            result = await self._call(self._api.register_request(session_id))
            await self._persist(result.session_id)
            parameters, challenge = result.data
            self._pending = PendingChallenge(ChallengeKind.REGISTRATION, challenge)
            return parameters, challenge

    async def _register_response(
        self, challenge: str, attestation: AttestationResponse
    ) -> list[Credential]:
        async with self._request_lock:
            _, session_id = await self._require_session("registerResponse", SignedIn)
            self._consume_challenge(ChallengeKind.REGISTRATION, challenge)
            try:
                result = await self._call(
                    self._api.register_response(session_id, challenge, attestation)
                )
            except SessionRejectedError:
                raise
            except PasslineError as e:
                logger.error("Cannot complete registration", error=e.message, code=e.code)
                raise
            credential_id = b64url_encode(attestation.credential_id)
            await self._persist(
                result.session_id,
                credentials=result.data,
                local_credential_id=credential_id,
            )
            self.machine.registration_completed()
            logger.info("Credential registered", credentials=len(result.data))
            return result.data

    async def _remove_key(self, credential_id: str) -> list[Credential]:
        async with self._request_lock:
            _, session_id = await self._require_session("removeKey", SignedIn)
            result = await self._call(self._api.remove_key(session_id, credential_id))
            session_id = result.session_id or session_id
            async with self._prefs.edit() as editor:
                if result.session_id is not None:
                    editor.put_string(SESSION_ID_KEY, result.session_id)
                if self._prefs.peek_string(LOCAL_CREDENTIAL_ID_KEY) == credential_id:
                    editor.remove(LOCAL_CREDENTIAL_ID_KEY)
            logger.info("Credential removed")

            keys = await self._call(self._api.get_keys(session_id))
            await self._persist(keys.session_id, credentials=keys.data)
            return keys.data

    async def _signin_request(
        self, credential_id: str | None
    ) -> tuple[CredentialRequestParameters, str]:
        async with self._request_lock:
            _, session_id = await self._require_session("signinRequest", SigningIn, SignedIn)
            credential_id = credential_id or self._prefs.peek_string(LOCAL_CREDENTIAL_ID_KEY)
            self._pending = None
            result = await self._call(self._api.signin_request(session_id, credential_id))
            await self._persist(result.session_id)
            parameters, challenge = result.data
            self._pending = PendingChallenge(ChallengeKind.ASSERTION, challenge)
            return parameters, challenge

    async def _signin_response(
        self, challenge: str, assertion: AssertionResponse
    ) -> list[Credential]:
        async with self._request_lock:
            username, session_id = await self._require_session(
                "signinResponse", SigningIn, SignedIn
            )
            self._consume_challenge(ChallengeKind.ASSERTION, challenge)
            try:
                result = await self._call(
                    self._api.signin_response(session_id, challenge, assertion)
                )
            except SessionRejectedError:
                raise
            except PasslineError as e:
                logger.error("Cannot complete sign-in", error=e.message, code=e.code)
                raise
            await self._persist(
                result.session_id,
                credentials=result.data,
                local_credential_id=b64url_encode(assertion.credential_id),
            )
            self.machine.assertion_verified()
            logger.info("Signed in with credential", username=username)
            return result.data

    async def _reauth(self) -> SignInState:
        async with self._request_lock:
            self.machine.require("reauth", SignedIn)
            await self._credentials.clear()
            self._pending = None
            return self.machine.reauth()

    async def _sign_out(self) -> SignInState:
        async with self._request_lock:
            await self._clear_identity()
            logger.info("Signed out")
            return self.machine.sign_out()
