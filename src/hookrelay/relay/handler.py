"""Relay endpoint: verify a Slack request, then forward its body to the queue."""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace

from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response

from hookrelay.common.errors import PublishError
from hookrelay.common.logging import get_logger
from hookrelay.common.metrics import record_publish, record_validation
from hookrelay.common.mqtt import OutboundMessage, QueuePublisher
from hookrelay.common.tracing import span
from hookrelay.relay.validation import (
    IncomingRequest,
    RelayConfig,
    RequestValidator,
    ValidationOutcome,
    parse_content_length,
)

logger = get_logger(__name__)


class ClientGone(Exception):
    """The caller disconnected while we were waiting on the broker."""


def incoming_from_request(request: Request, config: RelayConfig) -> IncomingRequest:
    """Collect the header-level request fields; the body is read separately."""
    return IncomingRequest(
        method=request.method,
        content_type=request.headers.get("content-type"),
        content_length=parse_content_length(request.headers.get("content-length")),
        timestamp=request.headers.get(config.timestamp_header, ""),
        signature=request.headers.get(config.signature_header, ""),
    )


async def read_body(request: Request, length: int, timeout: float) -> bytes | None:
    """
    Read exactly ``length`` bytes of the request body.

    Returns None on a short read, a client disconnect or a timeout.
    """

    async def _read() -> bytes:
        buffer = bytearray()
        async for chunk in request.stream():
            buffer.extend(chunk)
            if len(buffer) >= length:
                break
        return bytes(buffer[:length])

    try:
        body = await asyncio.wait_for(_read(), timeout=timeout)
    except (ClientDisconnect, asyncio.TimeoutError):
        return None

    if len(body) != length:
        return None
    return body


async def wait_for_disconnect(request: Request) -> None:
    """Return once the ASGI server reports the client went away."""
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


class ForwardingHandler:
    """HTTP entry point for Slack webhooks.

    Every response has an empty body; the status code is the only signal
    returned to the caller.
    """

    def __init__(
        self,
        config: RelayConfig,
        publisher: QueuePublisher,
        topic: str,
        qos: int = 1,
        publish_timeout: float = 2.5,
        body_read_timeout: float = 5.0,
        validator: RequestValidator | None = None,
    ):
        self._config = config
        self._publisher = publisher
        self._topic = topic
        self._qos = qos
        self._publish_timeout = publish_timeout
        self._body_read_timeout = body_read_timeout
        self._validator = validator or RequestValidator(config)

    async def handle(self, request: Request) -> Response:
        """Validate the request and publish its body."""
        incoming = incoming_from_request(request, self._config)

        with span("relay.validate"):
            outcome = self._validator.check_headers(incoming)
            if outcome.is_valid:
                body = await read_body(
                    request,
                    incoming.content_length or 0,
                    self._body_read_timeout,
                )
                incoming = replace(incoming, body=body)
                outcome = self._validator.validate(incoming)

        record_validation(outcome.name.lower())
        if not outcome.is_valid:
            logger.info(
                "Invalid request",
                status=outcome.status_code,
                reason=outcome.name.lower(),
            )
            return Response(status_code=outcome.status_code)

        return await self._forward(request, incoming)

    async def _forward(self, request: Request, incoming: IncomingRequest) -> Response:
        if incoming.body is None:
            # validate() never passes without a body
            logger.error("Validated request has no buffered body")
            return Response(status_code=500)

        message = OutboundMessage(
            topic=self._topic,
            payload=incoming.body,
            qos=self._qos,
        )

        start = time.perf_counter()
        try:
            with span("relay.publish", {"messaging.destination": self._topic}):
                await self._publish_until_disconnect(request, message)
        except PublishError as exc:
            record_publish("error")
            logger.error("Failed publishing message", topic=exc.topic, error=str(exc))
            return Response(status_code=500)
        except asyncio.TimeoutError:
            record_publish("timeout")
            logger.error(
                "Timed out waiting for publish acknowledgment",
                topic=self._topic,
                timeout=self._publish_timeout,
            )
            return Response(status_code=500)
        except ClientGone:
            record_publish("cancelled")
            logger.warning("Client disconnected before publish acknowledgment", topic=self._topic)
            return Response(status_code=500)
        except Exception as exc:
            record_publish("error")
            logger.exception("Unexpected publish failure", topic=self._topic, error=str(exc))
            return Response(status_code=500)

        record_publish("acked", time.perf_counter() - start)
        return Response(status_code=ValidationOutcome.VALID.status_code)

    async def _publish_until_disconnect(self, request: Request, message: OutboundMessage) -> None:
        """
        Publish and wait for the acknowledgment.

        Raises:
            PublishError: the publisher failed
            asyncio.TimeoutError: no acknowledgment within the publish timeout
            ClientGone: the caller disconnected first
        """
        publish_task = asyncio.ensure_future(self._publisher.publish(message))
        disconnect_task = asyncio.ensure_future(wait_for_disconnect(request))
        tasks = {publish_task, disconnect_task}
        try:
            done, _ = await asyncio.wait(
                tasks,
                timeout=self._publish_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if publish_task in done:
            publish_task.result()
            return
        if disconnect_task in done:
            raise ClientGone()
        raise asyncio.TimeoutError()
