"""Authorization coordinator -- the state machine behind a login.

The :class:`AuthorizationCoordinator` owns everything one process knows about
its authorization: the current :class:`~authorizer.models.Credential`, the
pending :class:`~authorizer.auth.flow.FlowSession` (at most one), the
requested :class:`~authorizer.models.ScopeSet`, and the completion callback.

An attempt moves through these states::

    IDLE --authorize()--> DISCOVERING --ok--> PENDING
    DISCOVERING --fail--> IDLE (credential and pending flow cleared, no callback)
    PENDING --continue_with(matching url)--> IDLE (callback(True) or callback(False))
    PENDING --continue_with(other url)--> PENDING (returns False)
    PENDING --agent or error report fails it--> IDLE (credential cleared, callback(False))
    PENDING --agent abandons it--> IDLE (credential cleared, no callback)

Calling :meth:`~AuthorizationCoordinator.authorize` while PENDING replaces
the pending flow; the old one is not told and its redirect is no longer
accepted.

Every change to the in-memory credential is mirrored to the
:class:`~authorizer.auth.credential_store.CredentialStore` before the change
completes: an authorizable credential is saved, anything else removes the
record.

Completion callbacks are dispatched through an executor and therefore never
run inside :meth:`~AuthorizationCoordinator.authorize` or
:meth:`~AuthorizationCoordinator.continue_with` themselves.

Typical usage::

    coordinator = get_coordinator()
    coordinator.load_state()
    coordinator.add_scope("https://www.googleapis.com/auth/drive.file")
    coordinator.authorization_completion = lambda ok: print("authorized" if ok else "failed")
    coordinator.authorize()
    # ... later, when the host receives the redirect:
    coordinator.continue_with(redirect_url)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Iterable, Optional

from authorizer.auth.agent import BrowserAgent, ExternalAgent
from authorizer.auth.credential_store import CredentialStore
from authorizer.auth.discovery import EndpointDiscoverer
from authorizer.auth.flow import AuthorizationOutcome, FlowSession
from authorizer.auth.tokens import TokenClient
from authorizer.exceptions import AuthError, DiscoveryError, InvalidUsageError, StoreError
from authorizer.models import AuthorizationRequest, AuthorizerSettings, Credential, ScopeSet

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[bool], None]


class AuthorizationCoordinator:
    """Drive authorization-code logins and keep the credential persisted.

    Args:
        issuer: Issuer URL used for endpoint discovery.
        client_id: OAuth2 client id.
        redirect_uri: Redirect URI registered with the provider.
        credential_name: Logical name the credential is stored under.
        scopes: Scopes requested on top of the baseline scopes.
        additional_parameters: Extra query parameters for the
            authorization request.
        discoverer: Defaults to :class:`EndpointDiscoverer`.
        agent: Defaults to :class:`BrowserAgent`.
        store: Defaults to :class:`CredentialStore`.
        token_client: Defaults to :class:`TokenClient`.
        executor: Runs completion callbacks. Defaults to a private
            single-worker thread pool, shut down by :meth:`close`.
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        redirect_uri: str,
        *,
        credential_name: str = "default-authorization",
        scopes: Iterable[str] = (),
        additional_parameters: Optional[dict[str, str]] = None,
        discoverer: Optional[EndpointDiscoverer] = None,
        agent: Optional[ExternalAgent] = None,
        store: Optional[CredentialStore] = None,
        token_client: Optional[TokenClient] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self._issuer = issuer
        self._client_id = client_id
        self._redirect_uri = redirect_uri
        self._credential_name = credential_name
        self._scopes = ScopeSet(scopes)
        self._additional_parameters = dict(additional_parameters or {})
        self._discoverer = discoverer or EndpointDiscoverer()
        self._agent: ExternalAgent = agent or BrowserAgent()
        self._store = store or CredentialStore()
        self._token_client = token_client or TokenClient()
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="authorizer-completion"
        )

        self._lock = threading.RLock()
        self._credential: Optional[Credential] = None
        self._pending: Optional[FlowSession] = None

        self.authorization_completion: Optional[CompletionCallback] = None
        """Called with ``True`` or ``False`` when an attempt finishes."""

    @classmethod
    def from_settings(
        cls, settings: AuthorizerSettings, **collaborators: Any
    ) -> "AuthorizationCoordinator":
        """Build a coordinator from resolved settings.

        Client id and secret sources are resolved here. Keyword arguments
        are passed through as collaborators (``agent``, ``store`` ...).

        Raises:
            InvalidUsageError: If no issuer or client id is configured.
            ConfigError: If a credential source cannot be resolved.
        """
        from authorizer.config import resolve_credential

        if not settings.issuer:
            raise InvalidUsageError(
                "No issuer configured (set it with 'authorizer config set issuer <url>' "
                "or AUTHORIZER_ISSUER)"
            )
        if not settings.client_id_source:
            raise InvalidUsageError(
                "No client id configured (set it with 'authorizer config set "
                "client_id_source <id>' or AUTHORIZER_CLIENT_ID)"
            )

        client_secret = (
            resolve_credential(settings.client_secret_source)
            if settings.client_secret_source
            else None
        )
        collaborators.setdefault("discoverer", EndpointDiscoverer(timeout=settings.timeout))
        collaborators.setdefault(
            "token_client", TokenClient(timeout=settings.timeout, client_secret=client_secret)
        )
        return cls(
            settings.issuer,
            resolve_credential(settings.client_id_source),
            settings.redirect_uri,
            credential_name=settings.credential_name,
            scopes=settings.scopes,
            additional_parameters=settings.additional_parameters,
            **collaborators,
        )

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def credential(self) -> Optional[Credential]:
        """The current credential, or ``None`` when not authorized."""
        with self._lock:
            return self._credential

    @property
    def pending_flow(self) -> Optional[FlowSession]:
        with self._lock:
            return self._pending

    @property
    def scopes(self) -> list[str]:
        return self._scopes.as_list()

    @property
    def credential_name(self) -> str:
        return self._credential_name

    @property
    def redirect_uri(self) -> str:
        return self._redirect_uri

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def add_scope(self, scope: str) -> None:
        """Request *scope* in addition to the baseline ``openid profile``."""
        self._scopes.add(scope)

    def authorize(self, context: Any = None) -> Optional[FlowSession]:
        """Start a new authorization attempt.

        Discovers the provider's endpoints, builds the request, records the
        new pending flow and hands it to the agent. Returns as soon as the
        agent has been launched; the result arrives later through the
        completion callback.

        Args:
            context: Passed to the agent's ``present`` (for
                :class:`BrowserAgent`, the name of a browser).

        Returns:
            The new :class:`FlowSession`, or ``None`` if discovery failed. A
            discovery failure clears the current credential, drops any
            pending flow and does not invoke the completion callback.
        """
        logger.debug("Starting authorization against %s", self._issuer)
        try:
            configuration = self._discoverer.discover(self._issuer)
        except DiscoveryError as exc:
            logger.warning("Error retrieving discovery document: %s", exc)
            with self._lock:
                self._pending = None
            self._set_credential(None)
            return None

        request = AuthorizationRequest(
            configuration=configuration,
            client_id=self._client_id,
            scopes=self._scopes.as_list(),
            redirect_uri=self._redirect_uri,
            additional_parameters=self._additional_parameters,
        )
        session = FlowSession(request, self._token_client, self._on_outcome)
        with self._lock:
            if self._pending is not None:
                logger.debug("Replacing pending authorization flow")
            self._pending = session

        logger.debug("Initiating authorization request with scope: %s", request.scope)
        try:
            self._agent.present(session, context)
        except Exception as exc:
            logger.warning("Could not launch authorization agent: %s", exc)
            session.fail(exc)
        return session

    def continue_with(self, url: str) -> bool:
        """Resume the pending flow with a redirect URL delivered to the host.

        Returns:
            ``True`` if *url* belonged to the pending flow and was consumed
            (whether the code exchange then succeeded or not). ``False`` if
            nothing is pending or the URL is not this flow's redirect; in
            the latter case the flow stays pending.
        """
        with self._lock:
            session = self._pending
        if session is None:
            logger.debug("No pending authorization flow for %s", url)
            return False

        consumed = session.resume(url)
        if not consumed:
            logger.debug("URL does not continue the pending authorization flow")
        return consumed

    def report_authorization_error(self, error: BaseException) -> None:
        """Fail the pending flow with *error*.

        Clears the pending flow and the credential and invokes the
        completion callback with ``False``. Does nothing when no flow is
        pending.
        """
        logger.warning("Authorization error: %s", error)
        with self._lock:
            session = self._pending
        if session is not None:
            session.fail(error)

    def is_authorized(self) -> bool:
        with self._lock:
            credential = self._credential
        return credential is not None and credential.can_authorize()

    def load_state(self) -> None:
        """Adopt the stored credential, typically once at start-up.

        Leaves the current state alone when nothing is stored.
        """
        credential = self._store.load(self._credential_name)
        if credential is None:
            logger.debug("No stored credential '%s'", self._credential_name)
            return
        self._set_credential(credential)

    def reset_state(self) -> None:
        """Remove the stored credential and forget the in-memory one."""
        try:
            self._store.remove(self._credential_name)
        except StoreError as exc:
            logger.warning("%s", exc)
        self._set_credential(None)

    def authorization_headers(self) -> dict[str, str]:
        """Headers that authorize a downstream HTTP request.

        An expired access token is refreshed first and the refreshed
        credential persisted. A failed refresh means the authorization is
        gone: the credential is cleared.

        Raises:
            AuthError: If not authorized or the refresh fails.
        """
        with self._lock:
            credential = self._credential
        if credential is None:
            raise AuthError("Not authorized")

        if credential.is_expired():
            try:
                token_data = self._token_client.refresh(credential)
                credential = credential.refreshed(token_data)
            except AuthError as exc:
                logger.warning("Token refresh failed, dropping authorization: %s", exc)
                self._set_credential(None)
                raise AuthError(f"Authorization expired and could not be refreshed: {exc}") from exc
            self._set_credential(credential)

        return credential.authorization_header()

    def close(self) -> None:
        """Wait for queued callbacks and release the private executor."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_outcome(self, session: FlowSession, outcome: AuthorizationOutcome) -> None:
        with self._lock:
            if session is not self._pending:
                logger.debug("Ignoring outcome of a superseded flow: %r", outcome)
                return
            self._pending = None

            if outcome.succeeded:
                self._set_credential(outcome.credential)
                logger.debug("Received authorization tokens")
                self._notify(self._credential is not None)
            elif outcome.error is not None:
                self._set_credential(None)
                logger.warning("Authorization error: %s", outcome.error)
                self._notify(False)
            else:
                self._set_credential(None)
                logger.warning("No authorization state and no error from the agent")

    def _set_credential(self, credential: Optional[Credential]) -> None:
        if credential is not None and not credential.can_authorize():
            logger.debug("Discarding credential that can no longer authorize")
            credential = None

        with self._lock:
            if credential is not None and credential == self._credential:
                return
            self._credential = credential
            try:
                if credential is not None:
                    self._store.save(credential, self._credential_name)
                else:
                    self._store.remove(self._credential_name)
            except StoreError as exc:
                logger.warning("%s", exc)

    def _notify(self, succeeded: bool) -> None:
        callback = self.authorization_completion
        if callback is None:
            return
        self._executor.submit(_run_callback, callback, succeeded)


def _run_callback(callback: CompletionCallback, succeeded: bool) -> None:
    try:
        callback(succeeded)
    except Exception:
        logger.exception("Authorization completion callback failed")


# ------------------------------------------------------------------
# Process-wide instance
# ------------------------------------------------------------------

_coordinator: Optional[AuthorizationCoordinator] = None
_coordinator_lock = threading.Lock()


def get_coordinator(
    factory: Optional[Callable[[], AuthorizationCoordinator]] = None,
) -> AuthorizationCoordinator:
    """Return the process-wide coordinator, creating it exactly once.

    Args:
        factory: Builds the coordinator on first access. Defaults to
            :meth:`AuthorizationCoordinator.from_settings` with
            :func:`~authorizer.config.resolve_settings`.
    """
    global _coordinator
    if _coordinator is None:
        with _coordinator_lock:
            if _coordinator is None:
                if factory is None:
                    from authorizer.config import resolve_settings

                    _coordinator = AuthorizationCoordinator.from_settings(resolve_settings())
                else:
                    _coordinator = factory()
    return _coordinator


def set_coordinator(coordinator: AuthorizationCoordinator) -> None:
    """Install *coordinator* as the process-wide instance."""
    global _coordinator
    with _coordinator_lock:
        _coordinator = coordinator


def reset_coordinator() -> None:
    """Drop the process-wide instance. Primarily useful in test suites."""
    global _coordinator
    with _coordinator_lock:
        previous, _coordinator = _coordinator, None
    if previous is not None:
        previous.close()
