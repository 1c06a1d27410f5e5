"""One in-flight authorization attempt and the interpretation of its redirect.

A :class:`FlowSession` is created by the coordinator when it hands an
:class:`~authorizer.models.AuthorizationRequest` to the consent agent. When
the host application is re-entered with a redirect URL, the session decides
whether that URL belongs to it:

* **Not mine** -- wrong redirect target or wrong ``state``. :meth:`FlowSession.resume`
  returns ``False`` and nothing else happens.
* **Mine** -- the code is exchanged for tokens right away and the result is
  delivered to the session's completion hook as an
  :class:`AuthorizationOutcome`. :meth:`FlowSession.resume` returns ``True``
  whether the exchange succeeded or not.

The hook fires at most once per session, whichever of :meth:`~FlowSession.resume`,
:meth:`~FlowSession.fail` or :meth:`~FlowSession.abandon` gets there first.
"""

from __future__ import annotations

import logging
import secrets
import threading
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

from authorizer.auth.tokens import TokenClient
from authorizer.exceptions import AuthError, FlowResumptionError, TokenError
from authorizer.models import AuthorizationRequest, Credential

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


class AuthorizationOutcome:
    """Result of one authorization attempt.

    Exactly one of three shapes:

    - success: ``credential`` set, ``error`` is ``None``.
    - failure: ``error`` set, ``credential`` is ``None``.
    - ambiguous: neither set. The agent finished without a result and
      without saying why.
    """

    def __init__(
        self,
        credential: Optional[Credential] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if credential is not None and error is not None:
            raise ValueError("An outcome carries a credential or an error, not both")
        self.credential = credential
        self.error = error

    @property
    def succeeded(self) -> bool:
        return self.credential is not None

    @property
    def is_ambiguous(self) -> bool:
        return self.credential is None and self.error is None

    def __repr__(self) -> str:
        if self.succeeded:
            return "AuthorizationOutcome(succeeded)"
        if self.is_ambiguous:
            return "AuthorizationOutcome(ambiguous)"
        return f"AuthorizationOutcome(error={self.error!r})"


OutcomeHook = Callable[["FlowSession", AuthorizationOutcome], None]


def _normalized_target(url: str) -> tuple[str, str, Optional[int], str]:
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    port = parsed.port or _DEFAULT_PORTS.get(scheme)
    return scheme, (parsed.hostname or "").lower(), port, parsed.path or "/"


class FlowSession:
    """A pending authorization-code flow awaiting its redirect.

    Args:
        request: The request that was (or is about to be) presented.
        token_client: Used to exchange the returned code.
        on_outcome: Called once with this session and the outcome.
    """

    def __init__(
        self,
        request: AuthorizationRequest,
        token_client: TokenClient,
        on_outcome: OutcomeHook,
    ) -> None:
        self.request = request
        self._token_client = token_client
        self._on_outcome = on_outcome
        self._lock = threading.Lock()
        self._finished = False

    @property
    def authorization_url(self) -> str:
        return self.request.to_url()

    @property
    def finished(self) -> bool:
        return self._finished

    def matches(self, url: str) -> bool:
        """Whether *url* is the redirect answering this session's request.

        The scheme, host, port and path must equal the request's redirect
        URI, and the ``state`` query parameter must equal the request's
        state.
        """
        if _normalized_target(url) != _normalized_target(self.request.redirect_uri):
            return False
        states = parse_qs(urlparse(url).query).get("state", [])
        if len(states) != 1:
            return False
        return secrets.compare_digest(states[0], self.request.state)

    def resume(self, url: str) -> bool:
        """Continue the flow with a redirect URL.

        Returns:
            ``False`` if *url* does not belong to this session or the
            session already finished, ``True`` otherwise. The actual result
            is reported through the completion hook before this returns.
        """
        if not self.matches(url):
            logger.debug("Redirect %s does not belong to this flow", url)
            return False
        if not self._claim():
            logger.debug("Flow already finished, ignoring redirect")
            return False

        params = parse_qs(urlparse(url).query)
        if "error" in params:
            error_code = params["error"][0]
            description = params.get("error_description", [""])[0]
            message = f"Authorization failed: {error_code}"
            if description:
                message += f" - {description}"
            self._deliver(AuthorizationOutcome(error=FlowResumptionError(message, error_code)))
            return True

        codes = params.get("code", [])
        if not codes or not codes[0]:
            self._deliver(
                AuthorizationOutcome(
                    error=FlowResumptionError("No authorization code in redirect")
                )
            )
            return True

        try:
            token_data = self._token_client.exchange_code(
                self.request.configuration,
                codes[0],
                self.request.redirect_uri,
                self.request.client_id,
            )
            credential = Credential.from_token_response(
                token_data,
                client_id=self.request.client_id,
                configuration=self.request.configuration,
                requested_scopes=self.request.scopes,
            )
        except AuthError as exc:
            self._deliver(AuthorizationOutcome(error=exc))
            return True
        except (ValueError, TypeError) as exc:
            # pydantic.ValidationError is a ValueError
            error = TokenError(f"Unusable token response: {exc}")
            self._deliver(AuthorizationOutcome(error=error))
            return True

        self._deliver(AuthorizationOutcome(credential=credential))
        return True

    def fail(self, error: BaseException) -> None:
        """Finish the session with an explicit error. No-op once finished."""
        if self._claim():
            self._deliver(AuthorizationOutcome(error=error))

    def abandon(self) -> None:
        """Finish the session with neither a result nor an error. No-op once finished."""
        if self._claim():
            self._deliver(AuthorizationOutcome())

    def _claim(self) -> bool:
        with self._lock:
            if self._finished:
                return False
            self._finished = True
            return True

    def _deliver(self, outcome: AuthorizationOutcome) -> None:
        logger.debug("Flow finished: %r", outcome)
        self._on_outcome(self, outcome)
