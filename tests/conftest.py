"""
Pytest configuration and shared fixtures for erp_gateway tests.
"""

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from erp_gateway.config import GatewayConfig

UPSTREAM_TOKEN = "dux-token-4f9a"


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeUpstream:
    """Scripted upstream served through httpx.MockTransport.

    Each call pops the next scripted response; the last one repeats.
    Every request received is kept in ``requests``.
    """

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses) or [httpx.Response(200, json={"ok": True})]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        # Fresh copy so a scripted response can be served more than once
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=response.content,
        )

    @property
    def calls(self) -> int:
        return len(self.requests)

    def json_bodies(self) -> list[Any]:
        return [json.loads(r.content) if r.content else None for r in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def config() -> GatewayConfig:
    """Configuration pointing at a fake upstream, without admission spacing."""
    return GatewayConfig(
        upstream_base_url="https://erp.test/WSERP/rest/services",
        upstream_token=UPSTREAM_TOKEN,
        dispatch_interval_seconds=0,
        backoff_base_seconds=0.5,
    )


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_upstream() -> Callable[..., FakeUpstream]:
    """Factory for scripted upstreams."""
    return FakeUpstream
