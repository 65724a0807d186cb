"""MQTT publisher for relaying verified payloads."""

import asyncio
import contextlib
import ssl
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol, Self

import aiomqtt

from hookrelay.common.errors import (
    ConfigurationError,
    DependencyCheck,
    DependencyStatus,
    PublishError,
    StartupValidationError,
)
from hookrelay.common.logging import get_logger
from hookrelay.common.metrics import update_publisher_status

logger = get_logger(__name__)


class ExponentialBackoff:
    """Exponential backoff calculator."""

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
    ):
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._multiplier = multiplier
        self._attempt = 0

    def reset(self) -> None:
        """Reset backoff to initial state."""
        self._attempt = 0

    def next_delay(self) -> float:
        """Calculate next delay with exponential backoff."""
        delay = min(
            self._base_delay * (self._multiplier**self._attempt),
            self._max_delay,
        )
        self._attempt += 1
        return delay

    @property
    def attempt_count(self) -> int:
        """Current attempt count."""
        return self._attempt


@dataclass(frozen=True)
class OutboundMessage:
    """Envelope for a payload handed to the queue.

    ``payload`` is opaque and published byte-for-byte.
    """

    topic: str
    payload: bytes
    qos: int = 1
    retain: bool = False


class QueuePublisher(Protocol):
    """Anything that can hand an outbound message to a queue."""

    async def publish(self, message: OutboundMessage) -> None:
        """Publish and return once the queue acknowledged the message."""
        ...


def validate_topic(topic: str) -> str:
    """Check a topic is a concrete publish destination.

    Raises:
        ConfigurationError: empty topic or one containing wildcards
    """
    if not topic:
        raise ConfigurationError("Publish topic must be set")
    try:
        aiomqtt.Topic(topic)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid publish topic {topic!r}: {exc}") from exc
    return topic


class MqttPublisher:
    """Long-lived MQTT connection used for publishing.

    A single broker connection is shared by all requests. A background loop
    keeps it open and reconnects with exponential backoff; publishes made
    while disconnected fail immediately instead of queueing.
    """

    def __init__(
        self,
        host: str,
        port: int = 1883,
        client_id: str = "hookrelay",
        username: str | None = None,
        password: str | None = None,
        tls: bool = False,
        tls_ca_cert: str | None = None,
        tls_client_cert: str | None = None,
        tls_client_key: str | None = None,
        base_reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
        startup_retry_interval: float = 2.0,
    ):
        self._host = host
        self._port = port
        self._client_id = client_id
        self._username = username
        self._password = password
        self._tls = tls
        self._tls_ca_cert = tls_ca_cert
        self._tls_client_cert = tls_client_cert
        self._tls_client_key = tls_client_key
        self._startup_retry_interval = startup_retry_interval
        self._backoff = ExponentialBackoff(
            base_delay=base_reconnect_delay,
            max_delay=max_reconnect_delay,
        )
        self._client: aiomqtt.Client | None = None
        self._connected_event = asyncio.Event()
        self._running = False
        self._last_connected_time: float | None = None
        self._connection_count = 0
        self._disconnection_count = 0
        self._last_error: str | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the broker."""
        return self._client is not None

    @property
    def connection_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        return {
            "connected": self.is_connected,
            "connection_count": self._connection_count,
            "disconnection_count": self._disconnection_count,
            "last_connected": self._last_connected_time,
            "reconnect_attempts": self._backoff.attempt_count,
        }

    @asynccontextmanager
    async def connect(self, startup_timeout: float = 30.0) -> AsyncIterator[Self]:
        """
        Connection lifecycle.

        Waits for the first successful broker connection before yielding.

        Raises:
            StartupValidationError: broker not reachable within startup_timeout
        """
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        try:
            try:
                await asyncio.wait_for(self._connected_event.wait(), timeout=startup_timeout)
            except asyncio.TimeoutError:
                raise StartupValidationError(
                    [
                        DependencyCheck(
                            name="mqtt_broker",
                            status=DependencyStatus.UNAVAILABLE,
                            message=(
                                f"Cannot connect to {self._host}:{self._port} within "
                                f"{startup_timeout}s ({self._last_error or 'no response'})"
                            ),
                        )
                    ]
                ) from None
            yield self
        finally:
            self._running = False
            if self._task:
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task
            self._client = None
            update_publisher_status(False)

    def _next_delay(self) -> float:
        if self._connection_count == 0:
            return self._startup_retry_interval
        return self._backoff.next_delay()

    async def _run_loop(self) -> None:
        """Main connection loop with auto-reconnect."""
        while self._running:
            try:
                await self._connect_and_hold()
            except aiomqtt.MqttError as e:
                self._mark_disconnected(str(e))
                if not self._running:
                    break
                delay = self._next_delay()
                logger.warning(
                    "MQTT connection lost, reconnecting with backoff...",
                    error=str(e),
                    delay=delay,
                    attempt=self._backoff.attempt_count,
                )
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self._mark_disconnected(None)
                break
            except Exception as e:
                self._mark_disconnected(str(e))
                if not self._running:
                    break
                delay = self._next_delay()
                logger.error(
                    "Unexpected MQTT error, reconnecting...",
                    error=str(e),
                    delay=delay,
                )
                await asyncio.sleep(delay)

    def _mark_disconnected(self, error: str | None) -> None:
        if self._client is not None:
            self._disconnection_count += 1
        self._client = None
        self._last_error = error
        update_publisher_status(False)

    def _tls_context(self) -> ssl.SSLContext | None:
        if not self._tls:
            return None
        tls_context = ssl.create_default_context(cafile=self._tls_ca_cert)
        if self._tls_client_cert and self._tls_client_key:
            tls_context.load_cert_chain(self._tls_client_cert, self._tls_client_key)
        return tls_context

    async def _connect_and_hold(self) -> None:
        """Open a connection and keep it until the broker drops it."""
        logger.info(
            "Connecting to MQTT broker",
            host=self._host,
            port=self._port,
            client_id=self._client_id,
        )

        async with aiomqtt.Client(
            hostname=self._host,
            port=self._port,
            identifier=self._client_id,
            username=self._username,
            password=self._password,
            tls_context=self._tls_context(),
        ) as client:
            self._client = client
            self._connection_count += 1
            self._last_connected_time = time.time()
            self._backoff.reset()
            self._connected_event.set()
            update_publisher_status(True)

            logger.info(
                "MQTT connected",
                connection_number=self._connection_count,
            )

            # Nothing is subscribed; the iterator only returns by raising
            # MqttError once the connection drops.
            async for _ in client.messages:
                pass

    async def publish(self, message: OutboundMessage) -> None:
        """
        Publish a message and wait for the broker acknowledgment.

        With QoS 1 or 2 aiomqtt only returns once the broker confirmed
        receipt, so a normal return means the message is queued.

        Raises:
            PublishError: not connected, or the broker rejected the publish
        """
        client = self._client
        if client is None:
            raise PublishError("MQTT broker not connected", topic=message.topic)

        try:
            await client.publish(
                message.topic,
                payload=message.payload,
                qos=message.qos,
                retain=message.retain,
            )
        except aiomqtt.MqttError as exc:
            raise PublishError(str(exc), topic=message.topic) from exc
