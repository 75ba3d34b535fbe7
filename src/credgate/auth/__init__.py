"""OAuth 2.0 authorization code + PKCE acquisition.

Components, bottom-up:

* :mod:`~credgate.auth.pkce` -- PKCE pairs and the session-scoped verifier store.
* :mod:`~credgate.auth.client_info` -- ordered client identity strategies.
* :mod:`~credgate.auth.discovery` -- best-effort scope and metadata discovery.
* :mod:`~credgate.auth.listener` -- single-use loopback callback listener.
* :mod:`~credgate.auth.launcher` -- system browser launch.
* :mod:`~credgate.auth.coordinator` -- per-target session coordinator.
* :mod:`~credgate.auth.flow` -- end-to-end flow driver.
"""

from credgate.auth.coordinator import OAuthSessionCoordinator
from credgate.auth.flow import AuthorizationFlow
from credgate.auth.listener import CallbackListener, ListenerState
from credgate.auth.pkce import VerifierStore, generate_pkce_pair

__all__ = [
    "AuthorizationFlow",
    "CallbackListener",
    "ListenerState",
    "OAuthSessionCoordinator",
    "VerifierStore",
    "generate_pkce_pair",
]
