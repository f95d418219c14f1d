"""Sign-in state and the machine that owns it.

Transitions:
    SignedOut | SignInError  --username-->          SigningIn
    SigningIn                --password-->          SignedIn
    SigningIn                --password rejected--> SignInError
    SigningIn | SignedIn     --signin-->            SignedIn
    SignedIn                 --register-->          SignedIn
    SignedIn                 --reauth-->            SigningIn
    any                      --sign out-->          SignedOut
    any                      --session rejected-->  SignInError
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from passline.core.broadcast import Broadcaster, Subscription
from passline.core.exceptions import ProtocolMisuseError

logger = structlog.get_logger()

SIGNED_OUT_BY_SERVER = "Signed out by server"


@dataclass(frozen=True)
class SignInState:
    """Base of the four sign-in states."""


@dataclass(frozen=True)
class SignedOut(SignInState):
    """No user. The username screen's state."""


@dataclass(frozen=True)
class SigningIn(SignInState):
    """Username known, second factor (password or credential) pending."""

    username: str


@dataclass(frozen=True)
class SignedIn(SignInState):
    """Fully signed in."""

    username: str


@dataclass(frozen=True)
class SignInError(SignInState):
    """Sign-in failed; the caller shows ``message`` and starts over."""

    message: str


def state_from_identity(username: str | None, session_id: str | None) -> SignInState:
    """Derive the state implied by persisted identity."""
    if not username or not username.strip():
        return SignedOut()
    if not session_id or not session_id.strip():
        return SigningIn(username)
    return SignedIn(username)


class SessionStateMachine:
    """Owns the single authoritative SignInState.

    Each trigger method checks the current state, moves to the target state
    and publishes it. A trigger that is not valid from the current state
    raises ProtocolMisuseError and changes nothing. Persisting or clearing
    identity is the orchestrator's job; this class only tracks the state.
    """

    def __init__(self, initial: SignInState | None = None, buffer_size: int = 16) -> None:
        initial = initial if initial is not None else SignedOut()
        self._updates: Broadcaster[SignInState] = Broadcaster(initial, buffer_size=buffer_size)

    @classmethod
    def from_identity(
        cls, username: str | None, session_id: str | None, buffer_size: int = 16
    ) -> SessionStateMachine:
        return cls(state_from_identity(username, session_id), buffer_size=buffer_size)

    @property
    def state(self) -> SignInState:
        return self._updates.value

    @property
    def username(self) -> str | None:
        state = self.state
        if isinstance(state, (SigningIn, SignedIn)):
            return state.username
        return None

    def observe(self) -> Subscription[SignInState]:
        """Subscribe to state changes; the current state is delivered first."""
        return self._updates.subscribe()

    def close(self) -> None:
        self._updates.close()

    def require(self, trigger: str, *allowed: type[SignInState]) -> SignInState:
        current = self.state
        if not isinstance(current, allowed):
            raise ProtocolMisuseError(
                f"Cannot apply '{trigger}' in state {type(current).__name__}"
            )
        return current

    def _move(self, trigger: str, new_state: SignInState) -> SignInState:
        old_state = self.state
        self._updates.publish(new_state)
        logger.info(
            "Sign-in state changed",
            trigger=trigger,
            old=type(old_state).__name__,
            new=type(new_state).__name__,
        )
        return new_state

    # Triggers

    def username_accepted(self, username: str) -> SignInState:
        """The server accepted ``username`` and opened a session."""
        self.require("username", SignedOut, SignInError)
        return self._move("username", SigningIn(username))

    def password_accepted(self) -> SignInState:
        current = self.require("password", SigningIn)
        return self._move("password", SignedIn(current.username))

    def password_rejected(self, message: str) -> SignInState:
        self.require("password rejected", SigningIn)
        return self._move("password rejected", SignInError(message))

    def assertion_verified(self) -> SignInState:
        """A credential sign-in succeeded, from the sign-in screen or while signed in."""
        current = self.require("signin", SigningIn, SignedIn)
        return self._move("signin", SignedIn(current.username))

    def registration_completed(self) -> SignInState:
        current = self.require("register", SignedIn)
        return self._move("register", SignedIn(current.username))

    def reauth(self) -> SignInState:
        """Drop back to the second-factor step without losing the user."""
        current = self.require("reauth", SignedIn)
        return self._move("reauth", SigningIn(current.username))

    def sign_out(self) -> SignInState:
        return self._move("sign out", SignedOut())

    def session_rejected(self, message: str = SIGNED_OUT_BY_SERVER) -> SignInState:
        return self._move("session rejected", SignInError(message))
