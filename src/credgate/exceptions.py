"""Exception hierarchy for credgate.

All exceptions inherit from :class:`CredgateError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`credgate.exit_codes`.
The top-level error handler in :func:`credgate.app.main` catches
``CredgateError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    CredgateError (exit 1)
    +-- InvalidUsageError        (exit 2)
    +-- AuthError                (exit 3)
    |   +-- AuthorizationFlowError
    |   +-- RegistrationError
    |   +-- TokenExchangeError
    +-- NavigationDeniedError    (exit 3)
    +-- MissingVerifierError     (exit 1)
    +-- ConnectionError_         (exit 6)
    +-- ConfigError              (exit 1)

Scope and metadata discovery never raise: a failed lookup is treated as "no
result". Persistence write failures are not wrapped either; the store's own
exception reaches the caller unchanged.
"""

from __future__ import annotations

import enum

from credgate.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class CredgateError(Exception):
    """Base exception for all credgate errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`credgate.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(CredgateError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(CredgateError):
    """Raised when acquiring a credential fails."""

    exit_code = EXIT_AUTH_FAILURE


class FlowFailure(str, enum.Enum):
    """Why an authorization attempt ended without a code.

    Carried on :class:`AuthorizationFlowError` so that callers can decide
    whether a retry makes sense (e.g. ``timeout`` vs ``authorization_denied``).
    """

    AUTHORIZATION_DENIED = "authorization_denied"
    MISSING_CODE = "missing_code"
    STATE_MISMATCH = "state_mismatch"
    CALLBACK_PARSE_ERROR = "callback_parse_error"
    TIMEOUT = "timeout"
    PORT_IN_USE = "port_in_use"
    LISTENER_ERROR = "listener_error"
    BROWSER_LAUNCH_FAILED = "browser_launch_failed"
    CODE_OUTSTANDING = "authorization_code_outstanding"


class AuthorizationFlowError(AuthError):
    """Raised when the interactive authorization attempt fails.

    Args:
        message: Human-readable error description.
        reason: The :class:`FlowFailure` category.
    """

    def __init__(self, message: str, reason: FlowFailure):
        super().__init__(message)
        self.reason = reason


class RegistrationError(AuthError):
    """Raised when dynamic client registration is rejected or malformed."""


class TokenExchangeError(AuthError):
    """Raised when the authorization code cannot be exchanged for tokens."""


class NavigationDeniedError(CredgateError):
    """Raised when an embedded browser is asked to leave the provider's hosts."""

    exit_code = EXIT_AUTH_FAILURE


class MissingVerifierError(CredgateError):
    """Raised when a PKCE verifier is read before one was saved.

    This always indicates a call-ordering bug in the caller, never a normal
    "not authenticated yet" state.
    """


class ConnectionError_(CredgateError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class ConfigError(CredgateError):
    """Raised for configuration problems (missing targets, invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE
