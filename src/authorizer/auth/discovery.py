"""OpenID Connect endpoint discovery.

:class:`EndpointDiscoverer` resolves an issuer URL into a
:class:`~authorizer.models.ServiceConfiguration` by fetching the issuer's
``/.well-known/openid-configuration`` document. Discovery is single-shot:
nothing is cached and failed requests are not retried, so every call to
:meth:`~authorizer.auth.coordinator.AuthorizationCoordinator.authorize`
sees the provider's current metadata.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from authorizer.exceptions import DiscoveryError
from authorizer.models import ServiceConfiguration

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def discovery_url(issuer: str) -> str:
    """Return the discovery document URL for *issuer*.

    An issuer that already points at a discovery document is returned
    unchanged.
    """
    if issuer.endswith(WELL_KNOWN_PATH):
        return issuer
    return issuer.rstrip("/") + WELL_KNOWN_PATH


class EndpointDiscoverer:
    """Fetch and validate an issuer's discovery document.

    Args:
        timeout: HTTP timeout in seconds.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    def discover(self, issuer: str) -> ServiceConfiguration:
        """Resolve *issuer* into its endpoint configuration.

        Args:
            issuer: The issuer URL, e.g. ``https://accounts.google.com``.

        Returns:
            The provider's :class:`~authorizer.models.ServiceConfiguration`.

        Raises:
            DiscoveryError: If the document cannot be fetched, is not JSON,
                or lacks ``authorization_endpoint`` / ``token_endpoint``.
        """
        url = discovery_url(issuer)
        logger.debug("Fetching configuration for issuer %s from %s", issuer, url)
        try:
            response = httpx.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
            doc: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise DiscoveryError(
                f"Discovery failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"Discovery failed: {exc}") from exc
        except ValueError as exc:
            raise DiscoveryError(f"Discovery document is not valid JSON: {exc}") from exc

        if not isinstance(doc, dict):
            raise DiscoveryError("Discovery document is not a JSON object")
        for key in ("authorization_endpoint", "token_endpoint"):
            if key not in doc:
                raise DiscoveryError(f"Discovery document missing '{key}'")

        try:
            configuration = ServiceConfiguration.model_validate(doc)
        except ValidationError as exc:
            raise DiscoveryError(f"Invalid discovery document: {exc}") from exc

        logger.debug(
            "Discovered authorization endpoint %s, token endpoint %s",
            configuration.authorization_endpoint,
            configuration.token_endpoint,
        )
        return configuration
