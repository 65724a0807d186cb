"""Slack request validation and forwarding."""

from hookrelay.relay.handler import ForwardingHandler
from hookrelay.relay.validation import (
    IncomingRequest,
    RelayConfig,
    RequestValidator,
    ValidationOutcome,
)

__all__ = [
    "ForwardingHandler",
    "IncomingRequest",
    "RelayConfig",
    "RequestValidator",
    "ValidationOutcome",
]
