"""Shared fixtures for the sonoscast unit tests."""

import asyncio
import json
import sys
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

# Add server/ to sys.path so `import sonoscast` works without installing
SERVER_DIR = Path(__file__).resolve().parents[1] / "server"
sys.path.insert(0, str(SERVER_DIR))

from sonoscast.services.gateway import SonosCastClient  # noqa: E402

API_URL = "https://api.test"


class FakeRemote:
    """Scripted stand-in for the casting API.

    Responses queued for the same route are served in order; the last one
    repeats once the queue is down to a single entry.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[dict]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method, path, status=200, json=None, text=None, delay=0.0):
        self.routes.setdefault((method, path), []).append(
            {"status": status, "json": json, "text": text, "delay": delay}
        )

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": "not_found"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if reply["delay"]:
            await asyncio.sleep(reply["delay"])
        if reply["text"] is not None:
            return httpx.Response(reply["status"], text=reply["text"])
        if reply["json"] is None:
            return httpx.Response(reply["status"])
        return httpx.Response(reply["status"], json=reply["json"])

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def json_body(request: httpx.Request):
        return json.loads(request.content)

    @staticmethod
    def form_body(request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def client(remote):
    return SonosCastClient(base_url=API_URL, transport=remote.transport)


@pytest.fixture
def run():
    """Drive a coroutine to completion."""
    return asyncio.run
