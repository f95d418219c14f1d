"""Sign-in flow.

- SessionStateMachine: the single authoritative SignInState
- AuthOrchestrator: drives the API client, store and state machine
- PlatformAuthenticator: contract for the external WebAuthn authenticator
"""

from passline.auth.authenticator import (
    AuthenticatorCancelled,
    AuthenticatorFailure,
    AuthenticatorOutcome,
    AuthenticatorSuccess,
    PlatformAuthenticator,
    unwrap_assertion,
    unwrap_attestation,
)
from passline.auth.orchestrator import AuthOrchestrator, ChallengeKind, PendingChallenge
from passline.auth.state import (
    SessionStateMachine,
    SignedIn,
    SignedOut,
    SignInError,
    SignInState,
    SigningIn,
    state_from_identity,
)

__all__ = [
    # Orchestrator
    "AuthOrchestrator",
    "ChallengeKind",
    "PendingChallenge",
    # State
    "SessionStateMachine",
    "SignInState",
    "SignedOut",
    "SigningIn",
    "SignedIn",
    "SignInError",
    "state_from_identity",
    # Authenticator
    "PlatformAuthenticator",
    "AuthenticatorOutcome",
    "AuthenticatorSuccess",
    "AuthenticatorFailure",
    "AuthenticatorCancelled",
    "unwrap_attestation",
    "unwrap_assertion",
]
