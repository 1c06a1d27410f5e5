"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~authorizer.exceptions.AuthorizerError` subclass.
Shell wrappers can inspect the exit code to tell a rejected login from a
provider that could not be reached without parsing stderr.

Example::

    $ authorizer login
    $ echo $?
    6   # EXIT_CONNECTION_ERROR -- discovery document could not be fetched
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing settings."""

EXIT_AUTH_FAILURE = 3
"""Authorization was denied, abandoned, or the token exchange failed."""

EXIT_CONNECTION_ERROR = 6
"""The provider could not be reached (discovery failed, timeout, DNS)."""
