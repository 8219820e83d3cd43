"""Tests for services/auth.py: exchange, refresh and liveness against a fake token endpoint."""

import logging
from urllib.parse import parse_qs, urlparse

import pytest

from sonoscast.errors import (
    AuthTestFailed,
    MalformedTokenResponse,
    MissingCredential,
    RefreshFailed,
    TerminalAuthFailure,
    TokenExchangeFailed,
)
from sonoscast.models import TokenState
from sonoscast.services.auth import AuthenticationManager, connection_label


@pytest.fixture
def auth(client):
    return AuthenticationManager(client, client_id="test-client", scope="playback-control-all")


class TestAuthorizeUrl:
    def test_static_template(self, auth):
        url = urlparse(auth.authorize_url("xyz-state"))
        params = {k: v[0] for k, v in parse_qs(url.query).items()}
        assert url.path == "/oauth/authorize"
        assert params == {
            "client_id": "test-client",
            "response_type": "code",
            "scope": "playback-control-all",
            "state": "xyz-state",
        }

    def test_state_passed_through_unmodified(self, auth):
        url = urlparse(auth.authorize_url("a b/c?d=e"))
        assert parse_qs(url.query)["state"] == ["a b/c?d=e"]

    def test_pkce_challenge_appended(self, auth):
        url = urlparse(auth.authorize_url("s", code_challenge="abc"))
        params = parse_qs(url.query)
        assert params["code_challenge"] == ["abc"]
        assert params["code_challenge_method"] == ["S256"]


class TestExchangeCode:
    def test_missing_code(self, auth, run):
        with pytest.raises(MissingCredential):
            run(auth.exchange_code(None, "https://cb", "verifier"))

    def test_posts_authorization_code_grant(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"access_token": "at", "refresh_token": "rt"})
        run(auth.exchange_code("the-code", "https://cb", "verifier"))

        request = remote.calls("/oauth/token")[0]
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert remote.form_body(request) == {
            "grant_type": "authorization_code",
            "code": "the-code",
            "redirect_uri": "https://cb",
            "client_id": "test-client",
            "code_verifier": "verifier",
        }
        assert "authorization" not in request.headers

    def test_token_type_defaults_to_bearer(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"access_token": "at", "expires_in": 3600})
        state = run(auth.exchange_code("c", "https://cb", "v"))
        assert state.token_type == "Bearer"
        assert state.expires_in == 3600

    def test_remote_token_type_kept(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"access_token": "at", "token_type": "mac"})
        state = run(auth.exchange_code("c", "https://cb", "v"))
        assert state.token_type == "mac"

    def test_non_200_includes_raw_body(self, auth, remote, run):
        remote.add("POST", "/oauth/token", status=400, text="invalid_grant: code reused")
        with pytest.raises(TokenExchangeFailed) as exc:
            run(auth.exchange_code("c", "https://cb", "v"))
        assert exc.value.body == "invalid_grant: code reused"
        assert "invalid_grant: code reused" in str(exc.value)

    def test_missing_access_token(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"refresh_token": "rt"})
        with pytest.raises(MalformedTokenResponse):
            run(auth.exchange_code("c", "https://cb", "v"))


class TestRefresh:
    def test_missing_refresh_token(self, auth, run):
        with pytest.raises(MissingCredential):
            run(auth.refresh(TokenState(access_token="at")))

    def test_posts_refresh_grant(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"access_token": "new"})
        run(auth.refresh(TokenState(access_token="old", refresh_token="rt")))
        assert remote.form_body(remote.requests[0]) == {
            "grant_type": "refresh_token",
            "refresh_token": "rt",
            "client_id": "test-client",
        }

    def test_keeps_refresh_token_when_omitted(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"access_token": "new", "expires_in": 60})
        state = run(auth.refresh(TokenState(access_token="old", refresh_token="keep-me")))
        assert state.access_token == "new"
        assert state.refresh_token == "keep-me"

    def test_empty_refresh_token_does_not_overwrite(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"access_token": "new", "refresh_token": ""})
        state = run(auth.refresh(TokenState(access_token="old", refresh_token="keep-me")))
        assert state.refresh_token == "keep-me"

    def test_rotated_refresh_token_used(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"access_token": "new", "refresh_token": "rt2"})
        state = run(auth.refresh(TokenState(access_token="old", refresh_token="rt1")))
        assert state.refresh_token == "rt2"

    def test_logs_refresh_facts(self, auth, remote, run, caplog):
        remote.add("POST", "/oauth/token", json={"access_token": "new", "expires_in": 3600})
        with caplog.at_level(logging.INFO, logger="sonoscast.services.auth"):
            run(auth.refresh(TokenState(access_token="old", refresh_token="rt")))
        message = " ".join(r.message for r in caplog.records)
        assert "new refresh token: False" in message
        assert "expires in: 3600" in message

    def test_non_200_raises_refresh_failed_with_diagnostics(self, auth, remote, run, caplog):
        remote.add("POST", "/oauth/token", status=400, json={"error": "invalid_grant"})
        with caplog.at_level(logging.ERROR, logger="sonoscast.services.auth"):
            with pytest.raises(RefreshFailed) as exc:
                run(auth.refresh(TokenState(access_token="old", refresh_token="rt")))
        assert exc.value.status == 400
        assert exc.value.payload == {"error": "invalid_grant"}
        assert isinstance(exc.value, TerminalAuthFailure)
        assert any("Token refresh failed" in r.message for r in caplog.records)

    def test_missing_access_token_in_refresh(self, auth, remote, run):
        remote.add("POST", "/oauth/token", json={"token_type": "Bearer"})
        with pytest.raises(MalformedTokenResponse):
            run(auth.refresh(TokenState(access_token="old", refresh_token="rt")))


class TestLiveness:
    def test_missing_token(self, auth, run):
        with pytest.raises(MissingCredential):
            run(auth.test_liveness(""))

    def test_merges_remote_flags(self, auth, remote, run):
        remote.add(
            "GET",
            "/api/v2/whoami",
            json={"hasSonosToken": True, "hasSonosRefreshToken": False},
        )
        report = run(auth.test_liveness("at"))
        assert report.authenticated is True
        assert report.model_dump()["hasSonosToken"] is True
        assert report.model_dump()["hasSonosRefreshToken"] is False
        assert remote.requests[0].headers["authorization"] == "Bearer at"

    def test_non_200_raises_auth_test_failed(self, auth, remote, run):
        remote.add("GET", "/api/v2/whoami", status=500, text="db down")
        with pytest.raises(AuthTestFailed) as exc:
            run(auth.test_liveness("at"))
        assert exc.value.status == 500
        assert exc.value.body == "db down"


def test_connection_label():
    assert connection_label("playback-control-all") == "Sonos Account (playback-control-all)"
