"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest
from starlette.requests import Request

from hookrelay.common.hmac import sign
from hookrelay.common.settings import Settings
from hookrelay.relay.validation import RelayConfig

SIGNING_SECRET = "8f742231b10e8888abcd99yyyzzz85a5"
TIMESTAMP = "1531420618"
RELAY_PATH = "/slack/events"


@pytest.fixture
def secret() -> bytes:
    """Raw signing secret."""
    return SIGNING_SECRET.encode("utf-8")


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Create test settings."""
    monkeypatch.delenv("HOOKRELAY_SIGNING_SECRET", raising=False)
    return Settings(
        signing_secret=SIGNING_SECRET,
        mqtt_broker_host="localhost",
        mqtt_topic="test/slack/events",
        publish_timeout=0.5,
        body_read_timeout=0.5,
        _env_file=None,
    )


@pytest.fixture
def relay_config(secret: bytes) -> RelayConfig:
    """Relay config with the test secret."""
    return RelayConfig(signing_secret=secret)


@pytest.fixture
def sample_body() -> bytes:
    """A 50-byte Slack event payload."""
    body = b'{"type":"event_callback","event":{"type":"pings"}}'
    assert len(body) == 50
    return body


@pytest.fixture
def signed_headers(secret: bytes) -> Callable[..., dict[str, str]]:
    """Build Slack headers for a body."""

    def _build(
        body: bytes,
        timestamp: str = TIMESTAMP,
        content_type: str = "application/json",
        signing_key: bytes | None = None,
    ) -> dict[str, str]:
        return {
            "Content-Type": content_type,
            "X-Slack-Request-Timestamp": timestamp,
            "X-Slack-Signature": sign(signing_key or secret, timestamp, body),
        }

    return _build


@pytest.fixture
def mock_publisher() -> AsyncMock:
    """Publisher that acknowledges every message."""
    publisher = AsyncMock()
    publisher.publish = AsyncMock(return_value=None)
    publisher.is_connected = True
    return publisher


class FakeReceive:
    """ASGI receive callable serving a fixed body, then blocking or disconnecting."""

    def __init__(self, body: bytes = b"", disconnect_after_body: bool = False):
        self._body = body
        self._disconnect_after_body = disconnect_after_body
        self.calls = 0

    async def __call__(self) -> dict[str, Any]:
        self.calls += 1
        if self.calls == 1:
            return {"type": "http.request", "body": self._body, "more_body": False}
        if self._disconnect_after_body:
            return {"type": "http.disconnect"}
        await asyncio.Event().wait()
        return {"type": "http.disconnect"}  # pragma: no cover


def _make_request(
    method: str,
    headers: dict[str, str],
    receive: Callable[[], Awaitable[dict[str, Any]]],
    path: str = RELAY_PATH,
) -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "root_path": "",
        "headers": [
            (key.lower().encode("latin-1"), value.encode("latin-1"))
            for key, value in headers.items()
        ],
        "client": ("127.0.0.1", 12345),
        "server": ("testserver", 80),
    }
    return Request(scope, receive)


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Factory for Starlette requests built from raw parts."""
    return _make_request


@pytest.fixture
def fake_receive() -> type[FakeReceive]:
    """The FakeReceive class, for building ASGI receive callables."""
    return FakeReceive
