"""Shared fixtures for Tool Hub tests."""

import json
from typing import Any, Callable

import httpx
import pytest


class RecordingUpstream:
    """
    httpx MockTransport handler that records requests.

    ``responder`` receives the request and returns an ``httpx.Response``
    (or raises an httpx error to simulate a network failure).
    """

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def make_http(fake_sleep):
    """Build a ResilientClient whose transport is a recording mock."""
    from shared.http import ResilientClient

    def factory(responder: Callable[[httpx.Request], httpx.Response]):
        upstream = RecordingUpstream(responder)
        client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        return ResilientClient(client=client, sleep=fake_sleep), upstream

    return factory
