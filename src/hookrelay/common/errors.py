"""Shared error types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RelayError(Exception):
    """Base class for relay errors."""


class ConfigurationError(RelayError):
    """Invalid or missing configuration; fatal at startup."""


class PublishError(RelayError):
    """A message could not be handed to the broker."""

    def __init__(self, message: str, topic: str | None = None) -> None:
        super().__init__(message)
        self.topic = topic


class DependencyStatus(str, Enum):
    """Status of a dependency check."""

    OK = "ok"
    UNAVAILABLE = "unavailable"


@dataclass
class DependencyCheck:
    """Result of a dependency validation check."""

    name: str
    status: DependencyStatus
    message: str


class StartupValidationError(RelayError):
    """Raised when startup validation fails."""

    def __init__(self, checks: list[DependencyCheck]):
        self.checks = checks
        failed = [c for c in checks if c.status != DependencyStatus.OK]
        messages = [f"{c.name}: {c.message}" for c in failed]
        super().__init__(f"Startup validation failed: {'; '.join(messages)}")
