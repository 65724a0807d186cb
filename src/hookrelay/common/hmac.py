"""Slack request signing (v0 scheme).

Slack signs each request with HMAC-SHA256 over ``v0:<timestamp>:<raw body>``
keyed with the app's signing secret and sends ``v0=<hex digest>`` in the
signature header. The body must be the literal bytes received; any
re-serialization changes the digest.

See https://api.slack.com/authentication/verifying-requests-from-slack
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_VERSION = "v0"


def build_base_string(timestamp: str, raw_body: bytes) -> bytes:
    """Build the byte string Slack signs.

    Header values arrive latin-1 decoded, so the timestamp is encoded back
    the same way to recover the bytes the sender signed.
    """
    return b":".join(
        [
            SIGNATURE_VERSION.encode("ascii"),
            timestamp.encode("latin-1"),
            raw_body,
        ]
    )


def sign(secret: bytes, timestamp: str, raw_body: bytes) -> str:
    """Create a ``v0=``-prefixed hex signature."""
    digest = hmac.new(secret, build_base_string(timestamp, raw_body), hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify(secret: bytes, timestamp: str, raw_body: bytes, signature: str) -> bool:
    """Verify a Slack signature in constant time.

    Never raises: unencodable header values count as a mismatch.
    """
    try:
        expected = sign(secret, timestamp, raw_body).encode("ascii")
        supplied = signature.encode("latin-1")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected, supplied)
