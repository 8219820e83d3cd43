"""Response classification for every call made through the gateway.

Each classifier takes ``(response, request)`` and either returns the response
unchanged or raises the error kind the response represents. This module is the
only place that decides whether a failure is worth a refresh-and-retry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable

from ..errors import (
    PermissionDenied,
    RecoverableAuthFailure,
    SonosCastError,
    TerminalAuthFailure,
)

if TYPE_CHECKING:
    from .gateway import GatewayRequest, GatewayResponse

logger = logging.getLogger(__name__)

# OAuth error codes that a refresh can fix
REFRESHABLE_ERRORS = ("invalid_token", "token_expired")

Classifier = Callable[["GatewayResponse", "GatewayRequest"], "GatewayResponse"]


def describe_error(payload: Any, fallback: str) -> str:
    """Pick the most human-readable description the remote supplied.

    Falls back to the raw body when the payload carries nothing useful.
    """
    if isinstance(payload, dict):
        if payload.get("error_description"):
            return str(payload["error_description"])
        if payload.get("message"):
            return str(payload["message"])
        if payload.get("errorCode"):
            reason = payload.get("reason") or fallback
            return f"{reason} [{payload['errorCode']}]"
    return fallback


def classify_unauthorized(response: GatewayResponse, request: GatewayRequest) -> GatewayResponse:
    # Only a request that presented a bearer token can have that token rejected
    if response.status != 401 or not request.token:
        return response

    logger.info("Received 401 response, checking for token expiration")
    payload = response.parsed_body
    if isinstance(payload, dict) and payload.get("error") in REFRESHABLE_ERRORS:
        logger.info(f"Detected expired token ({payload['error']}), refresh required")
        raise RecoverableAuthFailure(
            "Access token expired",
            status=response.status,
            body=response.raw_body,
            payload=payload,
        )

    if payload is None:
        logger.info("Could not parse 401 error response, treating as auth error")
    raise TerminalAuthFailure(
        "Authentication failed. Please reconnect your Sonos account.",
        status=response.status,
        body=response.raw_body,
        payload=payload,
    )


def classify_forbidden(response: GatewayResponse, request: GatewayRequest) -> GatewayResponse:
    if response.status == 403:
        raise PermissionDenied(
            "Access denied. Please verify your permissions.",
            status=response.status,
            body=response.raw_body,
            payload=response.parsed_body,
        )
    return response


def classify_api_error(response: GatewayResponse, request: GatewayRequest) -> GatewayResponse:
    if response.status >= 400:
        raise _failure(response, request)
    return response


DEFAULT_CLASSIFIERS: tuple[Classifier, ...] = (
    classify_unauthorized,
    classify_forbidden,
    classify_api_error,
)


def classify(
    response: GatewayResponse,
    request: GatewayRequest,
    classifiers: Iterable[Classifier] = DEFAULT_CLASSIFIERS,
) -> GatewayResponse:
    for classifier in classifiers:
        response = classifier(response, request)
    return response


def ensure_ok(response: GatewayResponse, request: GatewayRequest) -> GatewayResponse:
    """Reject anything but a 200 that made it past the classifiers."""
    if response.status != 200:
        raise _failure(response, request)
    return response


def should_refresh(error: BaseException) -> bool:
    """True when the failed call should be retried once after a token refresh."""
    return isinstance(error, RecoverableAuthFailure)


def _failure(response: GatewayResponse, request: GatewayRequest) -> SonosCastError:
    detail = describe_error(response.parsed_body, response.raw_body)
    return request.failure.from_response(
        detail,
        status=response.status,
        body=response.raw_body,
        payload=response.parsed_body,
        **request.error_context,
    )
