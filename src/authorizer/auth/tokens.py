"""Token endpoint client: authorization-code exchange and refresh.

Both requests are plain form-encoded POST requests made with :mod:`httpx`.
The parsed JSON response is returned as-is; turning it into a
:class:`~authorizer.models.Credential` is left to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from authorizer.exceptions import TokenError
from authorizer.models import Credential, ServiceConfiguration

logger = logging.getLogger(__name__)


class TokenClient:
    """Talks to a provider's token endpoint.

    Args:
        timeout: HTTP timeout in seconds.
        client_secret: Secret for confidential clients. Sent in the form
            body when set.
    """

    def __init__(self, timeout: float = 30.0, client_secret: Optional[str] = None) -> None:
        self._timeout = timeout
        self._client_secret = client_secret

    def exchange_code(
        self,
        configuration: ServiceConfiguration,
        code: str,
        redirect_uri: str,
        client_id: str,
    ) -> dict[str, Any]:
        """Exchange an authorization code for tokens.

        Returns:
            The parsed token response containing at least ``access_token``.

        Raises:
            TokenError: On HTTP errors or if ``access_token`` is missing.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
        }
        logger.debug("Exchanging authorization code at %s", configuration.token_endpoint)
        return self._post(configuration.token_endpoint, data, "Token exchange")

    def refresh(self, credential: Credential) -> dict[str, Any]:
        """Obtain a new access token using the credential's refresh token.

        Raises:
            TokenError: If the credential has no refresh token or token
                endpoint, the request fails, or the response lacks
                ``access_token``.
        """
        if not credential.refresh_token:
            raise TokenError("No refresh token available")
        if not credential.token_endpoint:
            raise TokenError("Credential has no token endpoint to refresh against")

        data: dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        }
        if credential.client_id:
            data["client_id"] = credential.client_id
        logger.debug("Refreshing access token at %s", credential.token_endpoint)
        return self._post(credential.token_endpoint, data, "Token refresh")

    def _post(self, url: str, data: dict[str, str], action: str) -> dict[str, Any]:
        if self._client_secret:
            data["client_secret"] = self._client_secret
        try:
            response = httpx.post(
                url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            token_data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise TokenError(
                f"{action} failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenError(f"{action} failed: {exc}") from exc
        except ValueError as exc:
            raise TokenError(f"{action} returned invalid JSON: {exc}") from exc

        if "access_token" not in token_data:
            raise TokenError(f"{action} response missing 'access_token' field")
        return token_data
