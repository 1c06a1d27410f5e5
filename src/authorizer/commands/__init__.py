"""Built-in CLI sub-commands for authorizer.

Each module defines Typer commands that are registered on the root
application in :mod:`authorizer.app`:

- :mod:`~authorizer.commands.auth` -- ``login``, ``status``, ``logout``.
- :mod:`~authorizer.commands.config` -- ``config show|set|reset``.
"""
