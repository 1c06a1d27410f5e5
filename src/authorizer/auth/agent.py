"""External consent agents and the loopback redirect receiver.

The consent step runs outside this process: a browser (or any other user
agent) is handed the authorization URL, the user signs in, and the provider
redirects back to the registered redirect URI. This module holds both ends:

- :class:`ExternalAgent` -- the protocol an agent implements, and
  :class:`BrowserAgent`, which opens the system web browser.
- :class:`LoopbackRedirectReceiver` -- a tiny local HTTP server standing in
  for the host application's URL handler. It turns the incoming request
  back into the full redirect URL and passes it to
  :meth:`~authorizer.auth.coordinator.AuthorizationCoordinator.continue_with`.
"""

from __future__ import annotations

import html
import logging
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional, Protocol
from urllib.parse import urlparse

from authorizer.auth.flow import FlowSession
from authorizer.exceptions import AgentError

logger = logging.getLogger(__name__)


class ExternalAgent(Protocol):
    """Something that can present an authorization request to the user.

    Implementations must return promptly. The flow completes later, either
    through a redirect delivered to the host (which ends in
    :meth:`FlowSession.resume`) or through the agent itself calling
    :meth:`FlowSession.fail` or :meth:`FlowSession.abandon`.
    """

    def present(self, session: FlowSession, context: Any = None) -> None: ...


class BrowserAgent:
    """Open the authorization URL in a web browser.

    The *context* passed to :meth:`present` may name a browser registered
    with :mod:`webbrowser` (e.g. ``"firefox"``); ``None`` uses the default.
    """

    def present(self, session: FlowSession, context: Any = None) -> None:
        try:
            browser = webbrowser.get(context) if context else webbrowser.get()
        except webbrowser.Error as exc:
            raise AgentError(f"No usable browser: {exc}") from exc

        url = session.authorization_url

        # Open browser in a separate thread to avoid blocking
        def open_browser() -> None:
            if not browser.open(url):
                session.fail(AgentError("The browser could not be opened"))

        threading.Thread(target=open_browser, daemon=True).start()


_PAGE = "<html><body><h2>{}</h2></body></html>"


class LoopbackRedirectReceiver:
    """Receive the provider's redirect on a loopback HTTP server.

    Listens on the host and port of *redirect_uri* in a background thread.
    Every request is rebuilt into an absolute URL and passed to
    *continue_with*; requests it does not consume (a browser fetching
    ``/favicon.ico``, a stale tab) get a 404 and the receiver keeps
    listening until :meth:`stop` is called.

    Args:
        redirect_uri: The registered ``http://127.0.0.1:<port>/<path>`` URI.
        continue_with: Called with each redirect URL; returns whether the
            URL was consumed.
        describe_result: Optional callable returning the message shown to
            the user after a consumed redirect.

    Example::

        with LoopbackRedirectReceiver(settings.redirect_uri, coordinator.continue_with):
            coordinator.authorize()
            done.wait(timeout=120)
    """

    def __init__(
        self,
        redirect_uri: str,
        continue_with: Callable[[str], bool],
        describe_result: Optional[Callable[[], str]] = None,
    ) -> None:
        parsed = urlparse(redirect_uri)
        if parsed.scheme != "http" or parsed.hostname not in ("127.0.0.1", "localhost"):
            raise AgentError(
                f"Loopback receiver needs an http://127.0.0.1 redirect URI, got {redirect_uri}"
            )
        self._origin = f"{parsed.scheme}://{parsed.netloc}"
        self._address = (parsed.hostname, parsed.port or 80)
        self._continue_with = continue_with
        self._describe_result = describe_result or (
            lambda: "Authorization received. You can close this window."
        )
        self._consumed = threading.Event()
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def consumed(self) -> bool:
        return self._consumed.is_set()

    def start(self) -> None:
        """Bind the server and start serving in a daemon thread.

        Raises:
            AgentError: If the port cannot be bound.
        """
        receiver = self
        self._consumed.clear()

        class RedirectHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                url = receiver._origin + self.path
                if receiver._continue_with(url):
                    receiver._consumed.set()
                    self._respond(200, receiver._describe_result())
                else:
                    self._respond(404, "Not an authorization redirect.")

            def _respond(self, status: int, message: str) -> None:
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.end_headers()
                self.wfile.write(_PAGE.format(html.escape(message)).encode("utf-8"))

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("Redirect receiver: " + format, *args)

        try:
            self._server = HTTPServer(self._address, RedirectHandler)
        except OSError as exc:
            raise AgentError(f"Cannot listen on {self._origin}: {exc}") from exc

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.debug("Listening for redirects on %s", self._origin)

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def __enter__(self) -> "LoopbackRedirectReceiver":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()
