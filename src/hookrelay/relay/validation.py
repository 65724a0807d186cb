"""Request validation for inbound Slack webhooks."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from hookrelay.common.errors import ConfigurationError
from hookrelay.common.hmac import verify
from hookrelay.common.settings import MAX_BODY_SIZE, Settings

EXPECTED_METHOD = "POST"
EXPECTED_CONTENT_TYPE = "application/json"

Verifier = Callable[[bytes, str, bytes, str], bool]


class ValidationOutcome(Enum):
    """Result of validating a request, with the status code to answer."""

    VALID = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    METHOD_NOT_ALLOWED = 405
    PAYLOAD_TOO_LARGE = 413
    UNSUPPORTED_MEDIA_TYPE = 415

    @property
    def status_code(self) -> int:
        return self.value

    @property
    def is_valid(self) -> bool:
        return self is ValidationOutcome.VALID


@dataclass(frozen=True)
class RelayConfig:
    """Immutable relay configuration shared by every request."""

    signing_secret: bytes = field(repr=False)
    signature_header: str = "X-Slack-Signature"
    timestamp_header: str = "X-Slack-Request-Timestamp"
    max_body_size: int = MAX_BODY_SIZE
    timestamp_tolerance_seconds: int | None = None

    def __post_init__(self) -> None:
        if not self.signing_secret:
            raise ConfigurationError("Signing secret must be set")
        if self.max_body_size <= 0:
            raise ConfigurationError("max_body_size must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> RelayConfig:
        """Build the relay config, failing fast when the secret is missing."""
        return cls(
            signing_secret=settings.signing_secret_bytes,
            signature_header=settings.signature_header,
            timestamp_header=settings.timestamp_header,
            max_body_size=settings.max_body_size,
            timestamp_tolerance_seconds=settings.timestamp_tolerance_seconds,
        )


@dataclass(frozen=True)
class IncomingRequest:
    """The parts of an HTTP request the validator looks at.

    ``body`` is the fully buffered request body, or None when it has not
    been (or could not be) read.
    """

    method: str
    content_type: str | None
    content_length: int | None
    timestamp: str
    signature: str
    body: bytes | None = None


def parse_content_length(value: str | None) -> int | None:
    """Parse a Content-Length header; None when absent or malformed."""
    if value is None:
        return None
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


class RequestValidator:
    """Runs the ordered request checks and the signature check.

    Checks short-circuit in this order: method, content type, size limit,
    body presence, signature. The first failure decides the outcome.
    """

    def __init__(self, config: RelayConfig, verifier: Verifier = verify):
        self._config = config
        self._verifier = verifier

    def check_headers(self, request: IncomingRequest) -> ValidationOutcome:
        """Run the checks that need no body."""
        if request.method != EXPECTED_METHOD:
            return ValidationOutcome.METHOD_NOT_ALLOWED

        if request.content_type != EXPECTED_CONTENT_TYPE:
            return ValidationOutcome.UNSUPPORTED_MEDIA_TYPE

        length = request.content_length
        if length is not None and length > self._config.max_body_size:
            return ValidationOutcome.PAYLOAD_TOO_LARGE

        if length is None or length <= 0:
            return ValidationOutcome.BAD_REQUEST

        return ValidationOutcome.VALID

    def validate(self, request: IncomingRequest) -> ValidationOutcome:
        """Run every check, including the signature over the buffered body."""
        outcome = self.check_headers(request)
        if not outcome.is_valid:
            return outcome

        body = request.body
        if body is None or len(body) != request.content_length:
            return ValidationOutcome.BAD_REQUEST

        if not self._is_fresh(request.timestamp):
            return ValidationOutcome.UNAUTHORIZED

        if not self._verifier(
            self._config.signing_secret,
            request.timestamp,
            body,
            request.signature,
        ):
            return ValidationOutcome.UNAUTHORIZED

        return ValidationOutcome.VALID

    def _is_fresh(self, timestamp: str) -> bool:
        tolerance = self._config.timestamp_tolerance_seconds
        if tolerance is None:
            return True
        try:
            ts_value = int(timestamp)
        except ValueError:
            return False
        return abs(int(time.time()) - ts_value) <= tolerance
