"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for authorizer:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.authorizer/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_credentials_dir`.
* **Settings** -- A single :class:`~authorizer.models.AuthorizerSettings`
  JSON file. See :func:`load_settings` and :func:`save_settings`.
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables, and the settings file into the effective settings.
* **Credential resolution** -- :func:`resolve_credential` reads client ids
  and secrets from env vars, files, or interactive prompts.

All file writes go through :func:`atomic_write` so that a crash never leaves
a half-written settings file or credential record behind.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional

from authorizer.exceptions import ConfigError
from authorizer.models import AuthorizerSettings

_APP_NAME = "authorizer"
_CONFIG_FILENAME = "config.json"

_ENV_OVERRIDES: dict[str, str] = {
    "AUTHORIZER_ISSUER": "issuer",
    "AUTHORIZER_CLIENT_ID": "client_id_source",
    "AUTHORIZER_CLIENT_SECRET": "client_secret_source",
    "AUTHORIZER_REDIRECT_URI": "redirect_uri",
    "AUTHORIZER_CREDENTIAL_NAME": "credential_name",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/authorizer/`` (default
    ``~/.config/authorizer/``). On macOS/Windows: ``~/.authorizer/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (credentials, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/authorizer/`` (default
    ``~/.local/share/authorizer/``). On macOS/Windows: ``~/.authorizer/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_credentials_dir() -> Path:
    """Return ``get_data_dir() / "credentials"``, creating it if necessary."""
    path = get_data_dir() / "credentials"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given it is applied to the temp file before any content is written, so
    secrets are never readable by others, even momentarily.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings ---


def _settings_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> AuthorizerSettings:
    """Load settings from the config directory.

    Returns:
        The deserialised :class:`~authorizer.models.AuthorizerSettings`, or
        a default instance if the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            validation.
    """
    path = _settings_path()
    if not path.is_file():
        return AuthorizerSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return AuthorizerSettings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid settings at {path}: {exc}") from exc


def save_settings(settings: AuthorizerSettings) -> None:
    """Persist settings atomically to ``config.json``."""
    data = settings.model_dump(mode="json")
    atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


def resolve_settings(
    cli_issuer: Optional[str] = None,
    cli_client_id: Optional[str] = None,
    cli_redirect_uri: Optional[str] = None,
    cli_scopes: Optional[list[str]] = None,
) -> AuthorizerSettings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags
        2. Environment variables (``AUTHORIZER_ISSUER``, ``AUTHORIZER_CLIENT_ID``,
           ``AUTHORIZER_CLIENT_SECRET``, ``AUTHORIZER_REDIRECT_URI``,
           ``AUTHORIZER_CREDENTIAL_NAME``)
        3. Settings file (``~/.config/authorizer/config.json``)
        4. Defaults

    CLI scopes are appended to the configured scopes rather than replacing
    them.
    """
    settings = load_settings()

    updates: dict[str, Any] = {}
    for env_var, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            updates[field_name] = value

    if cli_issuer is not None:
        updates["issuer"] = cli_issuer
    if cli_client_id is not None:
        updates["client_id_source"] = cli_client_id
    if cli_redirect_uri is not None:
        updates["redirect_uri"] = cli_redirect_uri
    if cli_scopes:
        updates["scopes"] = settings.scopes + [
            s for s in cli_scopes if s not in settings.scopes
        ]

    if not updates:
        return settings
    return AuthorizerSettings.model_validate({**settings.model_dump(), **updates})


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a client id or secret from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts interactively (requires a TTY)
        - anything else -- used literally (public client ids are not secret)

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter client credential: ")

    return source
