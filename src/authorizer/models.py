"""Canonical Pydantic models shared across all authorizer modules.

The models fall into three groups:

**Provider models** -- produced by discovery and flow construction:
    :class:`ServiceConfiguration` and :class:`AuthorizationRequest`.

**Authorization state** -- what the coordinator owns and persists:
    :class:`Credential` and :class:`ScopeSet`.

**Settings** -- serialised as JSON in the user's config directory:
    :class:`AuthorizerSettings`.

All models use Pydantic v2. :class:`Credential` is frozen so that callers can
hold a reference without being able to mutate the coordinator's state.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator, Optional
from urllib.parse import urlencode, urlparse

from pydantic import BaseModel, ConfigDict, Field

from authorizer.exceptions import TokenError


BASELINE_SCOPES: tuple[str, ...] = ("openid", "profile")
"""Scopes every authorization request carries. Never removable."""

RESPONSE_TYPE_CODE = "code"


# --- Provider models ---


class ServiceConfiguration(BaseModel):
    """Endpoint configuration resolved from an issuer's discovery document.

    Unknown keys from the discovery document are preserved in
    ``model_extra`` so that provider-specific metadata is not lost.
    """

    model_config = ConfigDict(extra="allow")

    authorization_endpoint: str
    token_endpoint: str
    issuer: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None


class AuthorizationRequest(BaseModel):
    """A single authorization-code request, ready to hand to a consent agent.

    ``state`` is generated fresh for every request and is what ties a
    redirect back to this particular request.

    Example::

        request = AuthorizationRequest(
            configuration=config,
            client_id="my-client",
            scopes=["openid", "profile"],
            redirect_uri="http://127.0.0.1:8765/callback",
        )
        webbrowser.open(request.to_url())
    """

    configuration: ServiceConfiguration
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    redirect_uri: str
    response_type: str = RESPONSE_TYPE_CODE
    state: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    @property
    def scope(self) -> str:
        """Space-delimited scope string as sent to the provider."""
        return " ".join(self.scopes)

    def to_url(self) -> str:
        """Build the full authorization URL including all query parameters."""
        params: dict[str, str] = {
            "response_type": self.response_type,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": self.state,
        }
        if self.scopes:
            params["scope"] = self.scope
        params.update(self.additional_parameters)

        endpoint = self.configuration.authorization_endpoint
        separator = "&" if urlparse(endpoint).query else "?"
        return f"{endpoint}{separator}{urlencode(params)}"


# --- Authorization state ---


class Credential(BaseModel):
    """Tokens and metadata needed to authorize future requests.

    A credential is either able to authorize (see :meth:`can_authorize`) or
    it must be treated as absent. Instances are immutable; a refresh
    produces a new instance via :meth:`refreshed`.

    Attributes:
        access_token: The bearer token sent to downstream services.
        token_type: Usually ``"Bearer"``.
        refresh_token: Long-lived token used to obtain new access tokens.
        expires_at: UTC expiry of ``access_token``. ``None`` means the
            provider did not say.
        id_token: The OpenID Connect ID token, if one was issued.
        scopes: The scopes granted by the provider.
        issuer: Issuer the credential was obtained from.
        client_id: Client the credential was issued to.
        token_endpoint: Where to send refresh requests.
        extra: Any other fields of the token response.
    """

    model_config = ConfigDict(frozen=True)

    access_token: Optional[str] = None
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    id_token: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    issuer: Optional[str] = None
    client_id: Optional[str] = None
    token_endpoint: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_token_response(
        cls,
        token_data: dict[str, Any],
        *,
        client_id: str | None = None,
        configuration: ServiceConfiguration | None = None,
        requested_scopes: Iterable[str] = (),
    ) -> "Credential":
        """Build a credential from a token endpoint JSON response.

        Args:
            token_data: Parsed token response. Must contain ``access_token``.
            client_id: The client the tokens were issued to.
            configuration: The provider configuration used for the exchange.
            requested_scopes: Used as the granted scopes when the response
                does not echo a ``scope`` field.

        Raises:
            TokenError: If ``expires_in`` is not a usable number of seconds.
            pydantic.ValidationError: If a field has the wrong type.
        """
        known = {
            "access_token",
            "token_type",
            "refresh_token",
            "expires_in",
            "id_token",
            "scope",
        }
        scope = token_data.get("scope")
        scopes = scope.split() if isinstance(scope, str) else list(requested_scopes)
        return cls(
            access_token=token_data["access_token"],
            token_type=token_data.get("token_type") or "Bearer",
            refresh_token=token_data.get("refresh_token"),
            expires_at=_expiry_from(token_data.get("expires_in")),
            id_token=token_data.get("id_token"),
            scopes=scopes,
            issuer=configuration.issuer if configuration else None,
            client_id=client_id,
            token_endpoint=configuration.token_endpoint if configuration else None,
            extra={k: v for k, v in token_data.items() if k not in known},
        )

    def refreshed(self, token_data: dict[str, Any]) -> "Credential":
        """Return a new credential with tokens from a refresh response.

        The refresh token and ID token are kept when the response omits them.
        """
        scope = token_data.get("scope")
        return self.model_copy(
            update={
                "access_token": token_data["access_token"],
                "token_type": token_data.get("token_type") or self.token_type,
                "refresh_token": token_data.get("refresh_token") or self.refresh_token,
                "expires_at": _expiry_from(token_data.get("expires_in")),
                "id_token": token_data.get("id_token") or self.id_token,
                "scopes": scope.split() if isinstance(scope, str) else self.scopes,
            }
        )

    def is_expired(self, leeway: float = 30.0) -> bool:
        """Whether the access token is missing or expires within *leeway* seconds."""
        if not self.access_token:
            return True
        if self.expires_at is None:
            return False
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) + timedelta(seconds=leeway) >= expires

    def can_authorize(self) -> bool:
        """True if the access token is usable now or can be refreshed."""
        return not self.is_expired(leeway=0) or bool(self.refresh_token)

    def authorization_header(self) -> dict[str, str]:
        """Header to attach to downstream HTTP requests."""
        return {"Authorization": f"{self.token_type} {self.access_token}"}


def _expiry_from(expires_in: Any) -> Optional[datetime]:
    if expires_in is None:
        return None
    try:
        return datetime.now(timezone.utc) + timedelta(seconds=float(expires_in))
    except (TypeError, ValueError, OverflowError) as exc:
        raise TokenError(f"Invalid expires_in in token response: {expires_in!r}") from exc


class ScopeSet:
    """Ordered, duplicate-free set of scope identifiers.

    Always contains :data:`BASELINE_SCOPES`. Scopes are plain strings so
    that callers can request scopes this package knows nothing about.
    """

    def __init__(self, scopes: Iterable[str] = ()) -> None:
        self._scopes: list[str] = list(BASELINE_SCOPES)
        for scope in scopes:
            self.add(scope)

    def add(self, scope: str) -> None:
        if scope not in self._scopes:
            self._scopes.append(scope)

    def discard(self, scope: str) -> None:
        """Remove *scope* if present.

        Raises:
            ValueError: If *scope* is one of the baseline scopes.
        """
        if scope in BASELINE_SCOPES:
            raise ValueError(f"Baseline scope '{scope}' cannot be removed")
        if scope in self._scopes:
            self._scopes.remove(scope)

    def as_list(self) -> list[str]:
        return list(self._scopes)

    def as_string(self) -> str:
        return " ".join(self._scopes)

    def __contains__(self, scope: object) -> bool:
        return scope in self._scopes

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._scopes))

    def __len__(self) -> int:
        return len(self._scopes)

    def __repr__(self) -> str:
        return f"ScopeSet({self._scopes!r})"


# --- Settings ---


class AuthorizerSettings(BaseModel):
    """Persistent settings for the authorizer, stored as ``config.json``.

    Client id and secret are given as *sources* (``env:VAR``, ``file:/path``,
    ``prompt`` or a literal value) and resolved at login time by
    :func:`~authorizer.config.resolve_credential`, so the settings file never
    needs to hold a secret.

    Example::

        AuthorizerSettings(
            issuer="https://accounts.google.com",
            client_id_source="env:GOOGLE_CLIENT_ID",
            scopes=["https://www.googleapis.com/auth/drive.file"],
        )
    """

    issuer: Optional[str] = Field(
        default=None, description="Issuer URL used for endpoint discovery"
    )
    client_id_source: Optional[str] = Field(
        default=None, description="Client id or its source: env:VAR, file:/path, prompt"
    )
    client_secret_source: Optional[str] = Field(
        default=None, description="Client secret source, for confidential clients"
    )
    redirect_uri: str = Field(
        default="http://127.0.0.1:8765/callback",
        description="Redirect URI registered with the provider",
    )
    scopes: list[str] = Field(
        default_factory=list, description="Scopes requested on top of the baseline"
    )
    credential_name: str = Field(
        default="default-authorization",
        description="Logical name the credential is stored under",
    )
    timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    additional_parameters: dict[str, str] = Field(
        default_factory=dict,
        description="Extra query parameters for the authorization request",
    )
