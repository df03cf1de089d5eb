"""Pytest fixtures for monitoring SDK tests."""

import asyncio
import os

import httpx
import pytest


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables before any imports.

    Ensures Settings can be built without validation errors.
    """
    os.environ.setdefault("MONITORING_API_KEY", "test-api-key-placeholder")
    os.environ.setdefault("MONITORING_ENDPOINT", "https://ingest.example.test/v1/telemetry")

    from monitoring_sdk.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def transport_config():
    """A transport config with retries and compression tuned for tests."""
    from monitoring_sdk.transport.models import TransportConfig

    return TransportConfig(
        endpoint="https://ingest.example.test/v1/telemetry",
        api_key="test-key",
        max_retries=2,
        retry_delay=0.01,
        max_retry_delay=0.05,
        batch_size=2,
        use_compression=False,
    )


class RecordingHandler:
    """httpx.MockTransport handler returning queued status codes.

    Each request pops the next status from ``statuses``; once exhausted every
    request gets ``default``. Requests are recorded on arrival, then answered
    after ``delay`` seconds.
    """

    def __init__(
        self, *statuses: int | Exception, default: int = 200, delay: float = 0.0
    ) -> None:
        self.statuses = list(statuses)
        self.default = default
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.statuses.pop(0) if self.statuses else self.default
        if isinstance(outcome, Exception):
            raise outcome
        if 200 <= outcome < 300:
            return httpx.Response(outcome, json={"accepted": True})
        return httpx.Response(outcome, text="upstream said no")

    def bodies(self) -> list[dict]:
        import json

        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def make_client():
    """Factory for an ``httpx.AsyncClient`` backed by a RecordingHandler."""

    def _make(*statuses: int | Exception, default: int = 200, delay: float = 0.0):
        handler = RecordingHandler(*statuses, default=default, delay=delay)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client, handler

    return _make
