"""Auth commands -- log in, inspect and drop the stored authorization.

``login`` drives one full authorization-code flow through the process-wide
:class:`~authorizer.auth.coordinator.AuthorizationCoordinator`: the browser
is opened on the provider's consent page and the redirect comes back either
to a loopback listener or, with ``--manual``, as a URL pasted by the user.
``status`` and ``logout`` work on the credential store directly, so they
do not need a configured provider.

Typical workflow::

    authorizer login --scope https://www.googleapis.com/auth/drive.file
    authorizer status
    authorizer logout
"""

from __future__ import annotations

import threading
import time
from typing import Optional

import typer

from authorizer.exit_codes import EXIT_AUTH_FAILURE, EXIT_CONNECTION_ERROR, EXIT_INVALID_USAGE
from authorizer.output import debug, error, info, print_record, success, suggest


def login_command(
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Additional scope to request (repeatable)."
    ),
    issuer: Optional[str] = typer.Option(None, "--issuer", help="Issuer URL override."),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="Client id or source (env:VAR, file:/path)."
    ),
    browser: Optional[str] = typer.Option(
        None, "--browser", help="Name of the browser to open (default: system browser)."
    ),
    manual: bool = typer.Option(
        False, "--manual", help="Paste the redirect URL instead of listening on loopback."
    ),
    timeout: float = typer.Option(
        300.0, "--timeout", help="Seconds to wait for the provider's redirect."
    ),
) -> None:
    """Authorize with the configured provider in a browser.

    Loads any stored credential first, then starts a new authorization
    attempt and waits for it to finish. The new credential replaces the
    stored one on success; a failed attempt leaves the process logged out.

    Raises:
        typer.Exit: With code 2 for missing settings, 6 when the provider
            cannot be discovered, 3 when authorization fails or times out.

    Example::

        authorizer login
        authorizer login --manual --scope email
    """
    from authorizer.auth import AuthorizationCoordinator, get_coordinator, reset_coordinator
    from authorizer.config import resolve_settings
    from authorizer.exceptions import AuthorizerError

    try:
        settings = resolve_settings(cli_issuer=issuer, cli_client_id=client_id)
        coordinator = get_coordinator(lambda: AuthorizationCoordinator.from_settings(settings))
    except AuthorizerError as exc:
        error(str(exc))
        suggest("Configure the provider: authorizer config set issuer <url>")
        raise typer.Exit(code=exc.exit_code) from None

    try:
        coordinator.load_state()
        for extra in scope or []:
            coordinator.add_scope(extra)

        done = threading.Event()
        result: dict[str, bool] = {}

        def on_complete(succeeded: bool) -> None:
            result["succeeded"] = succeeded
            done.set()

        coordinator.authorization_completion = on_complete

        if manual:
            _login_manual(coordinator, browser, done)
        else:
            _login_loopback(coordinator, browser, done, timeout)

        if not result.get("succeeded"):
            error("Authorization failed.")
            raise typer.Exit(code=EXIT_AUTH_FAILURE)
        success("Authorized.")
        suggest("Check it: authorizer status")
    finally:
        reset_coordinator()


def _login_loopback(coordinator, browser: Optional[str], done: threading.Event, timeout: float) -> None:  # noqa: ANN001
    from authorizer.auth import LoopbackRedirectReceiver
    from authorizer.exceptions import AgentError

    def describe() -> str:
        if coordinator.is_authorized():
            return "Authorization complete. You can close this window."
        return "Authorization failed. Return to the terminal for details."

    try:
        receiver = LoopbackRedirectReceiver(coordinator.redirect_uri, coordinator.continue_with, describe)
        receiver.start()
    except AgentError as exc:
        error(str(exc))
        suggest("Use --manual for a non-loopback redirect URI")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    try:
        session = _start(coordinator, browser)
        info("Waiting for the provider to redirect back...")
        _wait(coordinator, session, done, timeout)
    finally:
        receiver.stop()


def _login_manual(coordinator, browser: Optional[str], done: threading.Event) -> None:  # noqa: ANN001
    session = _start(coordinator, browser)
    url = typer.prompt("Paste the URL the browser was redirected to").strip()
    if not coordinator.continue_with(url):
        error("That URL does not belong to this login.")
        raise typer.Exit(code=EXIT_INVALID_USAGE)
    _wait(coordinator, session, done, timeout=30.0)


def _start(coordinator, browser: Optional[str]):  # noqa: ANN001, ANN202
    debug(f"Requesting scopes: {' '.join(coordinator.scopes)}")
    session = coordinator.authorize(browser)
    if session is None:
        error("Could not discover the provider's endpoints.")
        raise typer.Exit(code=EXIT_CONNECTION_ERROR)
    info("Opening the browser for sign-in. If it does not open, visit:")
    info(session.authorization_url)
    return session


def _wait(coordinator, session, done: threading.Event, timeout: float) -> None:  # noqa: ANN001
    """Block until the completion callback fires.

    Returns early if the flow ended without a callback (the agent gave up
    without an error) or was replaced.
    """
    deadline = time.monotonic() + timeout
    while not done.wait(0.2):
        if coordinator.pending_flow is not session:
            # Finished without a callback; give a queued callback a moment.
            done.wait(1.0)
            return
        if time.monotonic() >= deadline:
            error(f"No redirect received within {timeout:.0f} seconds.")
            raise typer.Exit(code=EXIT_AUTH_FAILURE)


def status_command() -> None:
    """Show whether a usable credential is stored.

    Exits with code 3 when not authorized, so scripts can test it.

    Example::

        authorizer status
        authorizer --json status
    """
    from authorizer.auth import CredentialStore
    from authorizer.config import resolve_settings

    settings = resolve_settings()
    store = CredentialStore()
    credential = store.load(settings.credential_name)

    if credential is None or not credential.can_authorize():
        info(f'Not authorized ("{settings.credential_name}").')
        suggest("Log in: authorizer login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    print_record(
        {
            "name": settings.credential_name,
            "authorized": True,
            "issuer": credential.issuer,
            "client_id": credential.client_id,
            "token_type": credential.token_type,
            "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
            "refreshable": bool(credential.refresh_token),
            "scopes": " ".join(credential.scopes),
            "path": str(store.path_for(settings.credential_name)),
        },
        title="Authorization",
    )


def logout_command(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Remove the stored credential.

    Example::

        authorizer logout
        authorizer logout --force
    """
    from authorizer.auth import CredentialStore
    from authorizer.config import resolve_settings
    from authorizer.exceptions import StoreError

    settings = resolve_settings()
    store = CredentialStore()
    if store.load(settings.credential_name) is None:
        info(f'No stored credential for "{settings.credential_name}".')
        return

    if not force:
        confirmed = typer.confirm(f'Remove stored credential "{settings.credential_name}"?')
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    try:
        store.remove(settings.credential_name)
    except StoreError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    success(f'Logged out ("{settings.credential_name}").')
