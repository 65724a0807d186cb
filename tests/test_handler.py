"""Tests for the forwarding handler."""

import asyncio
import hashlib
import hmac
from unittest.mock import AsyncMock, MagicMock

import pytest

from hookrelay.common.errors import PublishError
from hookrelay.common.hmac import sign
from hookrelay.common.mqtt import OutboundMessage
from hookrelay.relay.handler import ForwardingHandler, read_body
from hookrelay.relay.validation import RequestValidator, ValidationOutcome

TOPIC = "test/slack/events"


@pytest.fixture
def handler(relay_config, mock_publisher) -> ForwardingHandler:
    return ForwardingHandler(
        config=relay_config,
        publisher=mock_publisher,
        topic=TOPIC,
        publish_timeout=0.5,
        body_read_timeout=0.5,
    )


def _headers(signed_headers, body, **overrides):
    headers = signed_headers(body)
    headers["Content-Length"] = str(len(body))
    headers.update(overrides)
    return headers


class TestReadBody:
    """Test bounded body reads."""

    @pytest.mark.asyncio
    async def test_reads_declared_length(self, make_request, fake_receive, sample_body):
        request = make_request("POST", {}, fake_receive(sample_body))
        assert await read_body(request, len(sample_body), timeout=1.0) == sample_body

    @pytest.mark.asyncio
    async def test_short_read(self, make_request, fake_receive):
        request = make_request("POST", {}, fake_receive(b"short"))
        assert await read_body(request, 50, timeout=1.0) is None

    @pytest.mark.asyncio
    async def test_client_disconnect(self, make_request):
        async def receive():
            return {"type": "http.disconnect"}

        request = make_request("POST", {}, receive)
        assert await read_body(request, 10, timeout=1.0) is None

    @pytest.mark.asyncio
    async def test_timeout(self, make_request):
        async def receive():
            await asyncio.sleep(10)

        request = make_request("POST", {}, receive)
        assert await read_body(request, 10, timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_multiple_chunks(self, make_request):
        chunks = [
            {"type": "http.request", "body": b'{"a":', "more_body": True},
            {"type": "http.request", "body": b"1}", "more_body": False},
        ]

        async def receive():
            return chunks.pop(0)

        request = make_request("POST", {}, receive)
        assert await read_body(request, 7, timeout=1.0) == b'{"a":1}'


class TestForwardingHandler:
    """Test request handling end to end at the handler level."""

    @pytest.mark.asyncio
    async def test_valid_request_published_verbatim(
        self, handler, mock_publisher, make_request, fake_receive, signed_headers, sample_body
    ):
        request = make_request("POST", _headers(signed_headers, sample_body), fake_receive(sample_body))

        response = await handler.handle(request)

        assert response.status_code == 200
        assert response.body == b""
        mock_publisher.publish.assert_awaited_once()
        message = mock_publisher.publish.await_args.args[0]
        assert message == OutboundMessage(topic=TOPIC, payload=sample_body, qos=1)
        assert len(message.payload) == 50

    @pytest.mark.asyncio
    async def test_signature_over_trimmed_body_rejected(
        self, handler, mock_publisher, make_request, fake_receive, secret, sample_body
    ):
        body = sample_body + b" "
        headers = {
            "Content-Type": "application/json",
            "Content-Length": str(len(body)),
            "X-Slack-Request-Timestamp": "1531420618",
        }
        headers["X-Slack-Signature"] = sign(secret, "1531420618", body.rstrip())
        request = make_request("POST", headers, fake_receive(body))

        response = await handler.handle(request)

        assert response.status_code == 401
        mock_publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_never_verifies(
        self, relay_config, mock_publisher, make_request, fake_receive, signed_headers, sample_body
    ):
        verifier = MagicMock(return_value=True)
        handler = ForwardingHandler(
            config=relay_config,
            publisher=mock_publisher,
            topic=TOPIC,
            validator=RequestValidator(relay_config, verifier=verifier),
        )
        receive = fake_receive(sample_body)
        request = make_request("GET", _headers(signed_headers, sample_body), receive)

        response = await handler.handle(request)

        assert response.status_code == 405
        verifier.assert_not_called()
        assert receive.calls == 0
        mock_publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_text_plain_rejected(
        self, handler, mock_publisher, make_request, fake_receive, signed_headers, sample_body
    ):
        headers = _headers(signed_headers, sample_body, **{"Content-Type": "text/plain"})
        response = await handler.handle(make_request("POST", headers, fake_receive(sample_body)))

        assert response.status_code == 415
        mock_publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oversized_body_never_read(
        self, handler, mock_publisher, make_request, signed_headers, sample_body
    ):
        receive = AsyncMock(side_effect=AssertionError("body must not be read"))
        headers = _headers(
            signed_headers, sample_body, **{"Content-Length": str(11 * 1024 * 1024)}
        )

        response = await handler.handle(make_request("POST", headers, receive))

        assert response.status_code == 413
        receive.assert_not_awaited()
        mock_publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("length", [None, "0", "abc"])
    async def test_missing_or_bad_length(
        self, handler, make_request, fake_receive, signed_headers, sample_body, length
    ):
        headers = signed_headers(sample_body)
        if length is not None:
            headers["Content-Length"] = length
        receive = fake_receive(sample_body)

        response = await handler.handle(make_request("POST", headers, receive))

        assert response.status_code == 400
        assert receive.calls == 0

    @pytest.mark.asyncio
    async def test_truncated_body(
        self, handler, mock_publisher, make_request, fake_receive, signed_headers, sample_body
    ):
        headers = _headers(signed_headers, sample_body)
        response = await handler.handle(make_request("POST", headers, fake_receive(sample_body[:10])))

        assert response.status_code == 400
        mock_publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validated_without_body_is_server_error(
        self, relay_config, mock_publisher, make_request, fake_receive, signed_headers, sample_body
    ):
        validator = MagicMock()
        validator.check_headers.return_value = ValidationOutcome.VALID
        validator.validate.return_value = ValidationOutcome.VALID
        handler = ForwardingHandler(
            config=relay_config,
            publisher=mock_publisher,
            topic=TOPIC,
            body_read_timeout=0.5,
            validator=validator,
        )
        headers = _headers(signed_headers, sample_body)
        request = make_request("POST", headers, fake_receive(sample_body[:5]))

        response = await handler.handle(request)

        assert response.status_code == 500
        assert response.body == b""
        validator.validate.assert_called_once()
        assert validator.validate.call_args.args[0].body is None
        mock_publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_ascii_timestamp_signed_over_raw_bytes(
        self, handler, mock_publisher, make_request, fake_receive, secret, sample_body
    ):
        raw_timestamp = b"1531420618\xe9"
        digest = hmac.new(
            secret, b"v0:" + raw_timestamp + b":" + sample_body, hashlib.sha256
        ).hexdigest()
        headers = {
            "Content-Type": "application/json",
            "Content-Length": str(len(sample_body)),
            "X-Slack-Request-Timestamp": raw_timestamp.decode("latin-1"),
            "X-Slack-Signature": f"v0={digest}",
        }
        request = make_request("POST", headers, fake_receive(sample_body))

        response = await handler.handle(request)

        assert response.status_code == 200
        mock_publisher.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_publish_error(
        self, handler, mock_publisher, make_request, fake_receive, signed_headers, sample_body
    ):
        mock_publisher.publish.side_effect = PublishError("broker down", topic=TOPIC)
        request = make_request("POST", _headers(signed_headers, sample_body), fake_receive(sample_body))

        response = await handler.handle(request)

        assert response.status_code == 500
        assert response.body == b""
        mock_publisher.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_publish_error(
        self, handler, mock_publisher, make_request, fake_receive, signed_headers, sample_body
    ):
        mock_publisher.publish.side_effect = RuntimeError("boom")
        request = make_request("POST", _headers(signed_headers, sample_body), fake_receive(sample_body))

        response = await handler.handle(request)

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_publish_timeout(
        self, relay_config, make_request, fake_receive, signed_headers, sample_body
    ):
        cancelled = asyncio.Event()

        async def slow_publish(_message):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        publisher = MagicMock()
        publisher.publish = slow_publish
        handler = ForwardingHandler(
            config=relay_config,
            publisher=publisher,
            topic=TOPIC,
            publish_timeout=0.05,
        )
        request = make_request("POST", _headers(signed_headers, sample_body), fake_receive(sample_body))

        response = await handler.handle(request)

        assert response.status_code == 500
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_client_disconnect_aborts_publish_wait(
        self, relay_config, make_request, fake_receive, signed_headers, sample_body
    ):
        cancelled = asyncio.Event()

        async def slow_publish(_message):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        publisher = MagicMock()
        publisher.publish = slow_publish
        handler = ForwardingHandler(
            config=relay_config,
            publisher=publisher,
            topic=TOPIC,
            publish_timeout=5.0,
        )
        receive = fake_receive(sample_body, disconnect_after_body=True)
        request = make_request("POST", _headers(signed_headers, sample_body), receive)

        response = await asyncio.wait_for(handler.handle(request), timeout=1.0)

        assert response.status_code == 500
        assert cancelled.is_set()
