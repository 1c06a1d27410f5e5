"""Tests for FlowSession redirect matching and outcome delivery."""

from __future__ import annotations

import threading
from typing import Any
from urllib.parse import urlencode

import pytest

from authorizer.auth.flow import AuthorizationOutcome, FlowSession
from authorizer.exceptions import FlowResumptionError, TokenError
from authorizer.models import AuthorizationRequest, Credential, ServiceConfiguration


REDIRECT_URI = "http://127.0.0.1:8765/callback"


class _Recorder:
    def __init__(self) -> None:
        self.outcomes: list[AuthorizationOutcome] = []

    def __call__(self, session: FlowSession, outcome: AuthorizationOutcome) -> None:
        self.outcomes.append(outcome)


@pytest.fixture
def recorder() -> _Recorder:
    return _Recorder()


@pytest.fixture
def session(
    service_configuration: ServiceConfiguration,
    token_client: Any,
    recorder: _Recorder,
) -> FlowSession:
    request = AuthorizationRequest(
        configuration=service_configuration,
        client_id="test-client",
        scopes=["openid", "profile", "email"],
        redirect_uri=REDIRECT_URI,
    )
    return FlowSession(request, token_client, recorder)


def _redirect(session: FlowSession, base: str = REDIRECT_URI, **params: str) -> str:
    query = {"state": session.request.state, **params}
    return f"{base}?{urlencode(query)}"


class TestAuthorizationOutcome:
    def test_success(self) -> None:
        outcome = AuthorizationOutcome(credential=Credential(access_token="at"))
        assert outcome.succeeded
        assert not outcome.is_ambiguous

    def test_failure(self) -> None:
        outcome = AuthorizationOutcome(error=RuntimeError("boom"))
        assert not outcome.succeeded
        assert not outcome.is_ambiguous

    def test_ambiguous(self) -> None:
        outcome = AuthorizationOutcome()
        assert not outcome.succeeded
        assert outcome.is_ambiguous

    def test_both_rejected(self) -> None:
        with pytest.raises(ValueError):
            AuthorizationOutcome(credential=Credential(access_token="at"), error=RuntimeError())


class TestMatches:
    def test_matching_redirect(self, session: FlowSession) -> None:
        assert session.matches(_redirect(session, code="abc"))

    def test_wrong_state(self, session: FlowSession) -> None:
        assert not session.matches(f"{REDIRECT_URI}?code=abc&state=forged")

    def test_missing_state(self, session: FlowSession) -> None:
        assert not session.matches(f"{REDIRECT_URI}?code=abc")

    def test_repeated_state(self, session: FlowSession) -> None:
        state = session.request.state
        assert not session.matches(f"{REDIRECT_URI}?state={state}&state={state}&code=abc")

    def test_wrong_path(self, session: FlowSession) -> None:
        assert not session.matches(_redirect(session, base="http://127.0.0.1:8765/other", code="abc"))

    def test_wrong_port(self, session: FlowSession) -> None:
        assert not session.matches(_redirect(session, base="http://127.0.0.1:9999/callback", code="abc"))

    def test_wrong_scheme(self, session: FlowSession) -> None:
        assert not session.matches(_redirect(session, base="https://127.0.0.1:8765/callback", code="abc"))

    def test_host_case_insensitive(self, session: FlowSession) -> None:
        request = session.request.model_copy(update={"redirect_uri": "http://LocalHost:8765/callback"})
        other = FlowSession(request, None, lambda s, o: None)  # type: ignore[arg-type]
        assert other.matches(_redirect(other, base="http://localhost:8765/callback", code="abc"))

    def test_default_port(self, service_configuration: ServiceConfiguration) -> None:
        request = AuthorizationRequest(
            configuration=service_configuration,
            client_id="c",
            redirect_uri="com.example.app:/oauth2redirect",
        )
        session = FlowSession(request, None, lambda s, o: None)  # type: ignore[arg-type]
        assert session.matches(f"com.example.app:/oauth2redirect?state={request.state}&code=x")
        assert not session.matches(f"com.example.other:/oauth2redirect?state={request.state}&code=x")


class TestResume:
    def test_success(self, session: FlowSession, token_client: Any, recorder: _Recorder) -> None:
        assert session.resume(_redirect(session, code="abc")) is True

        assert token_client.exchanged == ["abc"]
        assert len(recorder.outcomes) == 1
        outcome = recorder.outcomes[0]
        assert outcome.succeeded
        assert outcome.credential.access_token == "access-123"
        assert outcome.credential.refresh_token == "refresh-456"
        assert outcome.credential.scopes == ["openid", "profile", "email"]
        assert outcome.credential.client_id == "test-client"
        assert session.finished

    def test_not_mine(self, session: FlowSession, token_client: Any, recorder: _Recorder) -> None:
        assert session.resume(f"{REDIRECT_URI}?code=abc&state=other") is False
        assert token_client.exchanged == []
        assert recorder.outcomes == []
        assert not session.finished

    def test_provider_error(self, session: FlowSession, token_client: Any, recorder: _Recorder) -> None:
        url = _redirect(session, error="access_denied", error_description="User said no")
        assert session.resume(url) is True

        assert token_client.exchanged == []
        error = recorder.outcomes[0].error
        assert isinstance(error, FlowResumptionError)
        assert error.error_code == "access_denied"
        assert "access_denied - User said no" in str(error)

    def test_missing_code(self, session: FlowSession, recorder: _Recorder) -> None:
        assert session.resume(_redirect(session)) is True
        error = recorder.outcomes[0].error
        assert isinstance(error, FlowResumptionError)
        assert "No authorization code" in str(error)

    def test_exchange_failure(self, session: FlowSession, token_client: Any, recorder: _Recorder) -> None:
        token_client.fail = True
        assert session.resume(_redirect(session, code="abc")) is True
        assert isinstance(recorder.outcomes[0].error, TokenError)

    @pytest.mark.parametrize(
        "token_data",
        [
            {"access_token": "at", "expires_in": "soon"},
            {"access_token": "at", "expires_in": 1e20},
            {"access_token": ["at"], "expires_in": 3600},
        ],
        ids=["non-numeric-expiry", "overflowing-expiry", "non-string-token"],
    )
    def test_unusable_token_response(
        self,
        session: FlowSession,
        token_client: Any,
        recorder: _Recorder,
        token_data: dict[str, Any],
    ) -> None:
        token_client.token_data = token_data
        assert session.resume(_redirect(session, code="abc")) is True

        assert session.finished
        assert len(recorder.outcomes) == 1
        assert isinstance(recorder.outcomes[0].error, TokenError)

    def test_second_resume_ignored(self, session: FlowSession, token_client: Any, recorder: _Recorder) -> None:
        url = _redirect(session, code="abc")
        assert session.resume(url) is True
        assert session.resume(url) is False
        assert token_client.exchanged == ["abc"]
        assert len(recorder.outcomes) == 1


class TestFailAndAbandon:
    def test_fail(self, session: FlowSession, recorder: _Recorder) -> None:
        error = RuntimeError("agent crashed")
        session.fail(error)
        assert recorder.outcomes[0].error is error
        assert session.finished

    def test_abandon(self, session: FlowSession, recorder: _Recorder) -> None:
        session.abandon()
        assert recorder.outcomes[0].is_ambiguous

    def test_hook_fires_once(self, session: FlowSession, recorder: _Recorder) -> None:
        session.fail(RuntimeError("first"))
        session.abandon()
        session.fail(RuntimeError("second"))
        assert session.resume(_redirect(session, code="abc")) is False
        assert len(recorder.outcomes) == 1
        assert str(recorder.outcomes[0].error) == "first"

    def test_concurrent_fail_and_resume_deliver_once(
        self,
        service_configuration: ServiceConfiguration,
        token_client: Any,
    ) -> None:
        for _ in range(20):
            recorder = _Recorder()
            request = AuthorizationRequest(
                configuration=service_configuration,
                client_id="test-client",
                redirect_uri=REDIRECT_URI,
            )
            session = FlowSession(request, token_client, recorder)
            barrier = threading.Barrier(2)

            def report_failure() -> None:
                barrier.wait()
                session.fail(RuntimeError("agent crashed"))

            def deliver_redirect() -> None:
                barrier.wait()
                session.resume(_redirect(session, code="abc"))

            threads = [
                threading.Thread(target=report_failure),
                threading.Thread(target=deliver_redirect),
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            assert session.finished
            assert len(recorder.outcomes) == 1
