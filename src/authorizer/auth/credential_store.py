"""Persistent credential store keyed by logical name.

Stores credentials in ``~/.local/share/authorizer/credentials/<name>.json``
(XDG) or the platform-equivalent directory. Files are written atomically via
:func:`~authorizer.config.atomic_write` with ``0o600`` permissions so that
tokens are never world-readable, even momentarily.

The presence of a record is the durable signal that the process was
authorized when it last ran; :class:`~authorizer.auth.coordinator.AuthorizationCoordinator`
keeps it in step with its in-memory credential.

See Also:
    :class:`~authorizer.models.Credential` -- the serialised payload.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from authorizer.config import atomic_write, get_credentials_dir
from authorizer.exceptions import StoreError
from authorizer.models import Credential

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


class CredentialStore:
    """Save, load and remove credentials under a logical name.

    Each name maps to one JSON file. Saves and removes are serialised with a
    lock, and every write is a rename of a fully written temp file, so a
    subsequent :meth:`load` sees either the old record or the new one.

    Args:
        directory: Where records live. Defaults to
            :func:`~authorizer.config.get_credentials_dir`.

    Example::

        store = CredentialStore()
        store.save(credential, "google")
        assert store.load("google") == credential
        store.remove("google")
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = directory
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        if self._directory is None:
            self._directory = get_credentials_dir()
        return self._directory

    def path_for(self, name: str) -> Path:
        """The filesystem path of the record stored under *name*."""
        if not name:
            raise StoreError("Credential name must not be empty")
        return self.directory / f"{_SAFE_NAME.sub('_', name)}.json"

    def save(self, credential: Credential, name: str) -> None:
        """Persist *credential* under *name*, replacing any existing record.

        Raises:
            StoreError: If the record cannot be written.
        """
        path = self.path_for(name)
        text = json.dumps(credential.model_dump(mode="json"), indent=2) + "\n"
        with self._lock:
            try:
                atomic_write(path, text, mode=0o600)
            except OSError as exc:
                raise StoreError(f"Cannot save credential '{name}' to {path}: {exc}") from exc
        logger.debug("Saved credential '%s' to %s", name, path)

    def load(self, name: str) -> Optional[Credential]:
        """Load the record stored under *name*.

        Returns:
            The deserialised :class:`~authorizer.models.Credential`, or
            ``None`` if there is no record or it cannot be parsed.
        """
        path = self.path_for(name)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Credential.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as exc:
            logger.warning("Ignoring unreadable credential record %s: %s", path, exc)
            return None

    def remove(self, name: str) -> None:
        """Delete the record stored under *name*. No-op if there is none.

        Raises:
            StoreError: If an existing record cannot be deleted.
        """
        path = self.path_for(name)
        with self._lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise StoreError(f"Cannot remove credential '{name}' at {path}: {exc}") from exc
        logger.debug("Removed credential '%s'", name)
