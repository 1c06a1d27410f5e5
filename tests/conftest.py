"""Shared test fixtures for authorizer.

Provides isolated config directories, reset of the process-wide output and
coordinator between tests, and lightweight collaborators (discoverer, agent,
token client, executor) for driving the coordinator without a network or a
browser. These fixtures are discovered automatically by pytest.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from authorizer.auth import AuthorizationCoordinator, CredentialStore, reset_coordinator
from authorizer.auth.flow import FlowSession
from authorizer.exceptions import DiscoveryError, TokenError
from authorizer.models import Credential, ServiceConfiguration
from authorizer.output import reset_output


ISSUER = "https://accounts.example.com"
CLIENT_ID = "test-client"
REDIRECT_URI = "http://127.0.0.1:8765/callback"


# ---------------------------------------------------------------------------
# Auto-reset global state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_globals_between_tests() -> None:
    """Drop the global OutputManager, coordinator and log handlers after every test.

    The OutputManager caches sys.stdout/sys.stderr, which CliRunner swaps
    out; the coordinator holds a credential that must not leak into the
    next test. CLI runs attach a Rich handler and stop propagation on the
    package logger, which would hide records from ``caplog``.
    """
    yield
    reset_output()
    reset_coordinator()
    package_logger = logging.getLogger("authorizer")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


# ---------------------------------------------------------------------------
# Config isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG directories at tmp_path and clear AUTHORIZER_* variables."""
    monkeypatch.setattr("authorizer.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in [
        "AUTHORIZER_ISSUER",
        "AUTHORIZER_CLIENT_ID",
        "AUTHORIZER_CLIENT_SECRET",
        "AUTHORIZER_REDIRECT_URI",
        "AUTHORIZER_CREDENTIAL_NAME",
    ]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------


class QueuedExecutor:
    """Executor double that holds submitted calls until :meth:`run_pending`."""

    def __init__(self) -> None:
        self.pending: list[tuple[Callable[..., Any], tuple[Any, ...]]] = []

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        self.pending.append((fn, args))

    def run_pending(self) -> None:
        calls, self.pending = self.pending, []
        for fn, args in calls:
            fn(*args)

    def shutdown(self, wait: bool = True) -> None:
        self.run_pending()


class StubDiscoverer:
    """Returns a fixed configuration, or raises DiscoveryError when *fail* is set."""

    def __init__(self, configuration: ServiceConfiguration, fail: bool = False) -> None:
        self.configuration = configuration
        self.fail = fail
        self.calls: list[str] = []

    def discover(self, issuer: str) -> ServiceConfiguration:
        self.calls.append(issuer)
        if self.fail:
            raise DiscoveryError("issuer unreachable")
        return self.configuration


class RecordingAgent:
    """Records presented sessions and optionally runs an action on each."""

    def __init__(self, action: Optional[Callable[[FlowSession], None]] = None) -> None:
        self.sessions: list[FlowSession] = []
        self.contexts: list[Any] = []
        self.action = action

    def present(self, session: FlowSession, context: Any = None) -> None:
        self.sessions.append(session)
        self.contexts.append(context)
        if self.action is not None:
            self.action(session)


class StubTokenClient:
    """Token client double returning a fixed response, or raising TokenError."""

    def __init__(self, token_data: Optional[dict[str, Any]] = None, fail: bool = False) -> None:
        self.token_data = token_data or make_token_response()
        self.fail = fail
        self.exchanged: list[str] = []
        self.refreshed: list[Credential] = []

    def exchange_code(
        self,
        configuration: ServiceConfiguration,
        code: str,
        redirect_uri: str,
        client_id: str,
    ) -> dict[str, Any]:
        self.exchanged.append(code)
        if self.fail:
            raise TokenError("invalid_grant")
        return dict(self.token_data)

    def refresh(self, credential: Credential) -> dict[str, Any]:
        self.refreshed.append(credential)
        if self.fail:
            raise TokenError("invalid_grant")
        return dict(self.token_data)


def make_token_response(
    access_token: str = "access-123",
    refresh_token: Optional[str] = "refresh-456",
    expires_in: int = 3600,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "id_token": "id-789",
    }
    if refresh_token is not None:
        data["refresh_token"] = refresh_token
    return data


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def service_configuration() -> ServiceConfiguration:
    return ServiceConfiguration(
        issuer=ISSUER,
        authorization_endpoint=f"{ISSUER}/o/oauth2/auth",
        token_endpoint=f"{ISSUER}/token",
    )


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "credentials")


@pytest.fixture
def executor() -> QueuedExecutor:
    return QueuedExecutor()


@pytest.fixture
def discoverer(service_configuration: ServiceConfiguration) -> StubDiscoverer:
    return StubDiscoverer(service_configuration)


@pytest.fixture
def agent() -> RecordingAgent:
    return RecordingAgent()


@pytest.fixture
def token_client() -> StubTokenClient:
    return StubTokenClient()


@pytest.fixture
def make_coordinator(
    discoverer: StubDiscoverer,
    agent: RecordingAgent,
    store: CredentialStore,
    token_client: StubTokenClient,
    executor: QueuedExecutor,
) -> Callable[..., AuthorizationCoordinator]:
    """Factory for coordinators wired to the doubles above.

    Keyword arguments override individual collaborators. Coordinators built
    by one test share the same store, which is how a process restart is
    simulated.
    """

    def factory(**overrides: Any) -> AuthorizationCoordinator:
        collaborators: dict[str, Any] = {
            "discoverer": discoverer,
            "agent": agent,
            "store": store,
            "token_client": token_client,
            "executor": executor,
        }
        collaborators.update(overrides)
        return AuthorizationCoordinator(ISSUER, CLIENT_ID, REDIRECT_URI, **collaborators)

    return factory


@pytest.fixture
def coordinator(make_coordinator: Callable[..., AuthorizationCoordinator]) -> AuthorizationCoordinator:
    return make_coordinator()
