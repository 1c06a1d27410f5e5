"""OAuth2 authorization-code login with persisted credentials.

The main entry points are:

- :class:`AuthorizationCoordinator` -- the state machine that discovers the
  provider, launches the consent agent, resumes the flow from a redirect and
  keeps the credential persisted. :func:`get_coordinator` returns the
  process-wide instance.
- :class:`FlowSession` -- one pending attempt; decides whether a redirect
  URL belongs to it.
- :class:`CredentialStore` -- durable, per-name credential records on disk.
- :class:`EndpointDiscoverer` and :class:`TokenClient` -- the HTTP side.
- :class:`BrowserAgent` and :class:`LoopbackRedirectReceiver` -- the
  browser-facing side.

Typical usage::

    from authorizer.auth import get_coordinator

    coordinator = get_coordinator()
    coordinator.load_state()
    if not coordinator.is_authorized():
        coordinator.authorize()
"""

from authorizer.auth.agent import BrowserAgent, ExternalAgent, LoopbackRedirectReceiver
from authorizer.auth.coordinator import (
    AuthorizationCoordinator,
    get_coordinator,
    reset_coordinator,
    set_coordinator,
)
from authorizer.auth.credential_store import CredentialStore
from authorizer.auth.discovery import EndpointDiscoverer
from authorizer.auth.flow import AuthorizationOutcome, FlowSession
from authorizer.auth.tokens import TokenClient

__all__ = [
    "AuthorizationCoordinator",
    "AuthorizationOutcome",
    "BrowserAgent",
    "CredentialStore",
    "EndpointDiscoverer",
    "ExternalAgent",
    "FlowSession",
    "LoopbackRedirectReceiver",
    "TokenClient",
    "get_coordinator",
    "reset_coordinator",
    "set_coordinator",
]
