"""
hookrelay: Slack webhook authentication gateway.

Verifies Slack request signatures and forwards the verified payloads,
byte-for-byte, to an MQTT topic for asynchronous processing.
"""

__version__ = "1.0.0"
