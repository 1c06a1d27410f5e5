"""Exception hierarchy for authorizer.

All exceptions inherit from :class:`AuthorizerError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`authorizer.exit_codes`.
The CLI entry point in :func:`authorizer.app.main` catches
``AuthorizerError`` and exits with the appropriate code. Inside the library
these exceptions are caught by the coordinator and turned into a "not
authorized" state; none of them is meant to crash the host process.

Subclass hierarchy::

    AuthorizerError           (exit 1)
    +-- InvalidUsageError     (exit 2)
    +-- ConfigError           (exit 1)
    +-- StoreError            (exit 1)
    +-- AuthError             (exit 3)
        +-- DiscoveryError    (exit 6)
        +-- TokenError        (exit 3)
        +-- FlowResumptionError (exit 3)
        +-- AgentError        (exit 3)
"""

from authorizer.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class AuthorizerError(Exception):
    """Base exception for all authorizer errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(AuthorizerError):
    """Raised for invalid CLI arguments or settings that make a login impossible."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(AuthorizerError):
    """Raised for configuration problems (invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE


class StoreError(AuthorizerError):
    """Raised when the credential store cannot save or remove a record."""

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(AuthorizerError):
    """Raised when authorization fails or the current credential is unusable."""

    exit_code = EXIT_AUTH_FAILURE


class DiscoveryError(AuthError):
    """Raised when the issuer's discovery document cannot be fetched or is invalid."""

    exit_code = EXIT_CONNECTION_ERROR


class TokenError(AuthError):
    """Raised when the token endpoint rejects a code exchange or refresh."""


class FlowResumptionError(AuthError):
    """Raised when a redirect matched the pending flow but carried no usable code.

    Args:
        message: Human-readable description.
        error_code: The provider's ``error`` parameter, if one was returned
            (e.g. ``"access_denied"``).
    """

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


class AgentError(AuthError):
    """Raised when the external consent agent cannot be launched."""
