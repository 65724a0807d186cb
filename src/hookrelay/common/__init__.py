"""Common utilities for hookrelay."""

from hookrelay.common.hmac import sign, verify
from hookrelay.common.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "sign",
    "verify",
]
