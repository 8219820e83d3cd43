"""Error kinds raised by the Sonos cast bridge.

Every error carries the diagnostics that were available when it was raised
(HTTP status, raw body, parsed body) so the host can log or surface them.
``requires_reauth`` tells the host whether the user has to reconnect.
"""

from __future__ import annotations

from typing import Any


class SonosCastError(Exception):
    """Base class for all bridge errors."""

    prefix = "Request failed"
    requires_reauth = False

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body
        self.payload = payload

    @classmethod
    def from_response(
        cls,
        detail: str,
        *,
        status: int | None = None,
        body: str | None = None,
        payload: Any = None,
        **context,
    ) -> SonosCastError:
        """Build the error for a rejected response, prefixed with the error's label."""
        return cls(
            f"{cls.prefix}: {detail}",
            status=status,
            body=body,
            payload=payload,
            **context,
        )

    def diagnostics(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status": self.status,
            "body": self.body,
            "json": self.payload,
        }


# Local validation failures (no request was sent)


class MissingCredential(SonosCastError):
    """A code, access token or refresh token needed for the call is absent."""


class NotAuthenticated(SonosCastError):
    """A data operation was invoked without an access token."""

    requires_reauth = True


class MissingFile(SonosCastError):
    """A file reference was required but did not yield a URL."""


class InvalidOption(SonosCastError):
    """A clip type or priority outside the supported values."""


class MalformedTokenResponse(SonosCastError):
    """The token endpoint answered 200 without an access_token."""


class NoHouseholds(SonosCastError):
    """The account has no Sonos households. Not transient."""


# Classified responses


class GenericApiError(SonosCastError):
    """A >=400 response that is neither an auth nor a permission problem."""

    prefix = "API request failed"


class RecoverableAuthFailure(SonosCastError):
    """Access token expired or invalid; refresh and retry once."""


class TerminalAuthFailure(SonosCastError):
    """Authentication can't be repaired by a refresh; user must reconnect."""

    requires_reauth = True


class PermissionDenied(SonosCastError):
    """403 from the remote. Never retried."""


# Component-specific remote failures


class TokenExchangeFailed(GenericApiError):
    prefix = "Token exchange failed"


class AuthTestFailed(GenericApiError):
    prefix = "Authentication failed"


class HouseholdFetchFailed(GenericApiError):
    prefix = "Failed to fetch households"


class GroupFetchFailed(GenericApiError):
    prefix = "Failed to fetch groups for household"

    def __init__(self, message: str, *, household_id: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.household_id = household_id

    @classmethod
    def from_response(cls, detail: str, *, household_id: str | None = None, **kwargs):
        return cls(
            f"{cls.prefix} {household_id}: {detail}",
            household_id=household_id,
            **kwargs,
        )


class PlaybackFailed(GenericApiError):
    prefix = "Cast2Sonos playback failed"


class AudioClipFailed(GenericApiError):
    prefix = "Failed to load audio clip"


class RefreshFailed(TerminalAuthFailure):
    """The refresh grant was rejected; the stored session is dead."""

    prefix = "Failed to refresh access token"
