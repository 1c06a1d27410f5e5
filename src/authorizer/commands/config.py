"""Config commands -- view and modify the stored settings.

Provides the ``authorizer config`` sub-command group for reading, updating
and resetting ``config.json`` (:class:`~authorizer.models.AuthorizerSettings`).
Environment variables and CLI flags still take precedence over what is
stored here; ``show`` prints the effective values.
"""

from __future__ import annotations

import typer

from authorizer.exit_codes import EXIT_INVALID_USAGE
from authorizer.output import error, info, print_record, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show the effective settings.

    Example::

        authorizer config show
        authorizer --json config show
    """
    from authorizer.config import get_config_dir, resolve_settings

    settings = resolve_settings()
    info(f"Config directory: {get_config_dir()}")
    print_record(settings.model_dump(mode="json"), title="Settings")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Setting name, or 'additional_parameters.<name>' for a request parameter."
    ),
    value: str = typer.Argument(help="Value to set. Scopes are comma-separated."),
) -> None:
    """Set a stored setting.

    The value is coerced to the field's type and the result validated
    before it is saved.

    Raises:
        typer.Exit: With code 2 for an unknown key or invalid value.

    Example::

        authorizer config set issuer https://accounts.google.com
        authorizer config set client_id_source env:GOOGLE_CLIENT_ID
        authorizer config set scopes email,https://www.googleapis.com/auth/drive.file
        authorizer config set additional_parameters.prompt consent
    """
    from authorizer.config import load_settings, save_settings
    from authorizer.models import AuthorizerSettings

    data = load_settings().model_dump(mode="json")

    if key.startswith("additional_parameters."):
        param = key.split(".", 1)[1]
        if not param:
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        data["additional_parameters"][param] = value
        coerced: object = value
    else:
        if key not in data:
            error(f"Unknown config key: {key}")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        current = data[key]
        if isinstance(current, list):
            coerced = [s.strip() for s in value.split(",") if s.strip()]
        elif isinstance(current, float):
            try:
                coerced = float(value)
            except ValueError:
                error(f"Expected a number for {key}, got: {value}")
                raise typer.Exit(code=EXIT_INVALID_USAGE) from None
        elif isinstance(current, dict):
            error(f"Set entries of {key} with '{key}.<name>'")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        else:
            coerced = value
        data[key] = coerced

    try:
        settings = AuthorizerSettings.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    save_settings(settings)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Reset stored settings to defaults.

    Example::

        authorizer config reset --force
    """
    from authorizer.config import save_settings
    from authorizer.models import AuthorizerSettings

    if not force:
        confirmed = typer.confirm("Reset all settings to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_settings(AuthorizerSettings())
    success("Settings reset to defaults.")
