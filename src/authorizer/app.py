"""Typer application and CLI entry point for authorizer.

This module wires together the top-level Typer application and its
sub-commands (``login``, ``status``, ``logout`` and the ``config`` group),
sets up output and logging from the global flags, and maps
:class:`~authorizer.exceptions.AuthorizerError` to process exit codes.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unexpected exceptions are written to a crash log under
the data directory.

See Also:
    :mod:`authorizer.config`: Settings resolution.
    :mod:`authorizer.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer
from rich.logging import RichHandler

from authorizer import __version__
from authorizer.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="authorizer",
    help="OAuth2 authorization-code login with persisted credentials.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"authorizer {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~authorizer.output.OutputManager` and the
    logging handler.
    """
    from authorizer.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    _configure_logging(verbose, output.stderr_console)


def _configure_logging(verbose: bool, console: Any) -> None:
    """Send the package's log records to stderr through Rich."""
    logger = logging.getLogger("authorizer")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = RichHandler(console=console, show_time=False, show_path=verbose)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log() -> str:
    """Write the current traceback to the data directory and return its path."""
    from authorizer.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


from authorizer.commands.auth import login_command, logout_command, status_command  # noqa: E402
from authorizer.commands.config import config_app  # noqa: E402

app.command("login")(login_command)
app.command("status")(status_command)
app.command("logout")(logout_command)
app.add_typer(config_app, name="config", help="Settings management.")


def main() -> None:
    """CLI entry point invoked by the ``authorizer`` console script.

    :class:`~authorizer.exceptions.AuthorizerError` exits with the error's
    ``exit_code``; anything else produces a crash log and a generic failure
    exit.
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from authorizer.exceptions import AuthorizerError
        from authorizer.output import error

        if isinstance(exc, AuthorizerError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log()
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
