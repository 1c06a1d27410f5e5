"""authorizer -- OAuth2 authorization-code login for desktop and CLI hosts.

This package discovers an OpenID Connect provider, sends the user to the
provider's consent page in a browser, picks the flow back up when the
redirect arrives, exchanges the code for tokens and keeps the resulting
credential on disk so that the next process start is already authorized.

Typical workflow::

    authorizer config set issuer https://accounts.google.com
    authorizer config set client_id_source env:GOOGLE_CLIENT_ID
    authorizer login          # opens the browser
    authorizer status

Modules:
    app: Typer application and CLI entry point.
    auth: Coordinator, flow session, credential store and HTTP clients.
    models: Pydantic models shared across the package.
    config: XDG-aware settings management.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
