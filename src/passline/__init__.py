"""Passline - WebAuthn relying-party client.

Signs a user in with a username and password, registers platform
credentials and signs in with them, against a server exposing the
/username, /password, /getKeys, /registerRequest, /registerResponse,
/removeKey, /signinRequest and /signinResponse endpoints.
"""

__version__ = "0.3.0"

from passline.auth.orchestrator import AuthOrchestrator
from passline.auth.state import SignedIn, SignedOut, SignInError, SignInState, SigningIn
from passline.core.exceptions import PasslineError
from passline.protocol.types import Credential

__all__ = [
    "__version__",
    "AuthOrchestrator",
    "Credential",
    "PasslineError",
    "SignInState",
    "SignedOut",
    "SigningIn",
    "SignedIn",
    "SignInError",
]
