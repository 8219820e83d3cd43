"""
CastBreeze authentication: OAuth 2.1 authorization code flow with PKCE.

  - authorize_url() renders the browser redirect (host adds the PKCE challenge)
  - exchange_code() trades the authorization code for a TokenState
  - refresh() renews the access token, keeping the old refresh token when the
    remote doesn't rotate it
  - test_liveness() calls /api/v2/whoami to label the connection

Failures and refresh outcomes are logged; the host relies on those records
when debugging a session that stopped refreshing.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from ..errors import (
    AuthTestFailed,
    MalformedTokenResponse,
    MissingCredential,
    RefreshFailed,
    SonosCastError,
    TokenExchangeFailed,
)
from ..models import LivenessReport, TokenState
from .gateway import SonosCastClient

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "oauth/token"
AUTHORIZE_ENDPOINT = "oauth/authorize"
WHOAMI_ENDPOINT = "api/v2/whoami"


def connection_label(scope: str | None) -> str:
    return f"Sonos Account ({scope or ''})"


class AuthenticationManager:
    """Owns the token lifecycle. Stateless: every call takes and returns state."""

    def __init__(
        self,
        client: SonosCastClient,
        client_id: str = "zapier-client-1",
        scope: str = "playback-control-all",
    ):
        self.client = client
        self.client_id = client_id
        self.scope = scope

    def authorize_url(
        self,
        state: str,
        code_challenge: str | None = None,
        redirect_uri: str | None = None,
    ) -> str:
        """Build the authorization URL. `state` is passed through untouched."""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "scope": self.scope,
            "state": state,
        }
        if redirect_uri:
            params["redirect_uri"] = redirect_uri
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{self.client._build_url(AUTHORIZE_ENDPOINT)}?{urlencode(params)}"

    async def exchange_code(
        self,
        code: str | None,
        redirect_uri: str | None,
        code_verifier: str | None,
    ) -> TokenState:
        """Exchange an authorization code for access + refresh tokens."""
        if not code:
            raise MissingCredential("Missing authorization code")

        response = await self.client.request(
            "POST",
            TOKEN_ENDPOINT,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or "",
                "client_id": self.client_id,
                "code_verifier": code_verifier or "",
            },
            failure=TokenExchangeFailed,
        )

        data = response.parsed_body
        if not isinstance(data, dict) or not data.get("access_token"):
            raise MalformedTokenResponse(
                "Token response missing access_token",
                status=response.status,
                body=response.raw_body,
                payload=data,
            )

        logger.info(f"Token exchange complete (scope: {data.get('scope')})")
        return TokenState(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope"),
        )

    async def refresh(self, current: TokenState) -> TokenState:
        """Refresh the access token using the refresh_token grant.

        Returns a brand-new TokenState. The refresh token is never dropped: if
        the response carries no new one, the current one is kept.
        """
        refresh_token = current.refresh_token
        if not refresh_token:
            raise MissingCredential("Missing refresh token")

        try:
            response = await self.client.request(
                "POST",
                TOKEN_ENDPOINT,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.client_id,
                },
                failure=RefreshFailed,
            )

            data = response.parsed_body
            if not isinstance(data, dict) or not data.get("access_token"):
                raise MalformedTokenResponse(
                    "Refresh response missing access_token",
                    status=response.status,
                    body=response.raw_body,
                    payload=data,
                )
        except SonosCastError as e:
            logger.error(f"Token refresh failed: {e.diagnostics()}")
            raise

        logger.info(
            f"Token refresh successful (new refresh token: {bool(data.get('refresh_token'))}, "
            f"expires in: {data.get('expires_in')})"
        )
        return TokenState(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_in=data.get("expires_in"),
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope") if data.get("scope") is not None else current.scope,
        )

    async def test_liveness(self, access_token: str | None) -> LivenessReport:
        """Verify the access token against the lightweight whoami endpoint."""
        if not access_token:
            raise MissingCredential("Missing access token")

        try:
            response = await self.client.request(
                "GET", WHOAMI_ENDPOINT, token=access_token, failure=AuthTestFailed
            )
        except SonosCastError as e:
            logger.error(f"Auth test error: {e.diagnostics()}")
            raise

        logger.debug(f"Whoami response: {response.parsed_body}")
        flags = response.parsed_body if isinstance(response.parsed_body, dict) else {}
        return LivenessReport(**{**flags, "authenticated": True})
