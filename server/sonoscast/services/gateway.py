"""Async HTTP gateway for the CastBreeze / casttosonos API.

Requests pass through a chain of decorators (pure request -> request
functions) before they are sent, and every response passes through the
classifier chain from ``classifier.py`` before it is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

import httpx

from ..errors import GenericApiError, SonosCastError
from .classifier import DEFAULT_CLASSIFIERS, Classifier, classify, ensure_ok

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    token: str | None = None
    json: Any = None
    data: dict[str, Any] | None = None
    # Error kind raised for rejected responses, and extra kwargs for it
    failure: type[SonosCastError] = GenericApiError
    error_context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayResponse:
    status: int
    raw_body: str
    parsed_body: Any = None


RequestDecorator = Callable[[GatewayRequest], GatewayRequest]


def accept_json(request: GatewayRequest) -> GatewayRequest:
    return replace(request, headers={"Accept": "application/json", **request.headers})


def bearer_auth(request: GatewayRequest) -> GatewayRequest:
    """Add the Authorization header when the call carries an access token."""
    if not request.token:
        return request
    return replace(
        request,
        headers={**request.headers, "Authorization": f"Bearer {request.token}"},
    )


DEFAULT_DECORATORS: tuple[RequestDecorator, ...] = (accept_json, bearer_auth)


def _parse_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class SonosCastClient:
    """Async HTTP client for the casting API."""

    def __init__(
        self,
        base_url: str = "https://api.casttosonos.com",
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
        decorators: Iterable[RequestDecorator] = DEFAULT_DECORATORS,
        classifiers: Iterable[Classifier] = DEFAULT_CLASSIFIERS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.decorators = tuple(decorators)
        self.classifiers = tuple(classifiers)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        """Build full URL for endpoint."""
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        token: str | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        failure: type[SonosCastError] = GenericApiError,
        require_ok: bool = True,
        **error_context,
    ) -> GatewayResponse:
        """Send one request and return the classified response.

        Raises the classifier's error kind for auth/permission/API failures,
        ``failure`` for other rejected responses, and ``httpx.HTTPError`` for
        transport failures.
        """
        request = GatewayRequest(
            method=method,
            url=self._build_url(endpoint),
            token=token,
            json=json,
            data=data,
            failure=failure,
            error_context=error_context,
        )
        for decorate in self.decorators:
            request = decorate(request)

        client = await self._get_client()
        http_response = await client.request(
            request.method,
            request.url,
            headers=request.headers,
            json=request.json,
            data=request.data,
        )
        response = GatewayResponse(
            status=http_response.status_code,
            raw_body=http_response.text,
            parsed_body=_parse_json(http_response),
        )
        logger.debug(f"{request.method} {request.url} -> {response.status}")

        response = classify(response, request, self.classifiers)
        if require_ok:
            response = ensure_ok(response, request)
        return response
