"""Pytest configuration and fixtures."""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

API_URL = "https://collector.test"


@pytest.fixture
def config():
    """Config with a long flush interval so the timer never fires during a test."""
    from telemetry_sdk.config import TelemetryConfig

    return TelemetryConfig(
        api_key="test-key",
        project_id="proj-1",
        api_url=API_URL,
        service_name="checkout",
        environment="test",
        version="2.0.0",
        flush_interval=60.0,
        retry_delay=0.01,
    )


@pytest.fixture
def make_event():
    """Factory for small, distinguishable MessageEvents."""
    from telemetry_sdk.models import MessageEvent

    def _make(n: int = 0) -> MessageEvent:
        return MessageEvent(
            event_id=f"evt-{n}",
            timestamp=datetime.now(timezone.utc).isoformat(),
            environment="test",
            project_id="proj-1",
            message=f"message {n}",
        )

    return _make


@pytest.fixture
def fake_sleep():
    """Stand-in for asyncio.sleep that records backoff delays."""
    return AsyncMock()


@pytest_asyncio.fixture
async def http_client():
    """AsyncClient owned by the test; respx intercepts its requests."""
    client = httpx.AsyncClient()
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def sender(config, http_client, fake_sleep):
    """Started BatchSender without a metrics source."""
    from telemetry_sdk.transport import BatchSender

    bs = BatchSender(config, client=http_client, sleep=fake_sleep)
    await bs.start()
    yield bs
    await bs.shutdown()


@pytest_asyncio.fixture
async def sdk(config, http_client):
    """Started TelemetrySDK with metrics disabled so bodies only hold captured events."""
    from telemetry_sdk.sdk import TelemetrySDK

    instance = TelemetrySDK(
        config.with_overrides(enable_metrics=False), client=http_client
    )
    await instance.start()
    yield instance
    await instance.shutdown()


@pytest.fixture
def posted_events():
    """Event lists of every request a respx route received, in order."""

    def _events(route) -> list[list[dict]]:
        return [json.loads(call.request.content)["events"] for call in route.calls]

    return _events
