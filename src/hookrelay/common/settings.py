"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_BODY_SIZE = 10 * 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HOOKRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Signing
    signing_secret: SecretStr | None = Field(
        default=None,
        description="Slack signing secret used to verify inbound requests",
    )
    signature_header: str = Field(
        default="X-Slack-Signature",
        description="Header carrying the request signature",
    )
    timestamp_header: str = Field(
        default="X-Slack-Request-Timestamp",
        description="Header carrying the request timestamp",
    )
    timestamp_tolerance_seconds: int | None = Field(
        default=None,
        description="Max age (seconds) for request timestamps (None disables the replay window)",
    )

    # Relay endpoint
    relay_path: str = Field(
        default="/slack/events",
        description="Path of the relay endpoint",
    )
    host: str = Field(
        default="0.0.0.0",
        description="Host for the relay HTTP server",
    )
    port: int = Field(
        default=8080,
        description="Port for the relay HTTP server",
    )
    max_body_size: int = Field(
        default=MAX_BODY_SIZE,
        description="Maximum accepted Content-Length in bytes",
    )
    body_read_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds allowed for reading the request body",
    )
    publish_timeout: float = Field(
        default=2.5,
        gt=0,
        description="Seconds to wait for the broker to acknowledge a publish",
    )

    # MQTT
    mqtt_broker_host: str = Field(
        default="localhost",
        description="MQTT broker hostname",
    )
    mqtt_broker_port: int = Field(
        default=1883,
        description="MQTT broker port",
    )
    mqtt_client_id: str = Field(
        default="hookrelay",
        description="MQTT client identifier",
    )
    mqtt_username: str | None = Field(
        default=None,
        description="MQTT username (optional)",
    )
    mqtt_password: str | None = Field(
        default=None,
        description="MQTT password (optional)",
    )
    mqtt_tls_enabled: bool = Field(
        default=False,
        description="Enable TLS for MQTT connections",
    )
    mqtt_tls_ca_cert: str | None = Field(
        default=None,
        description="Path to CA certificate for MQTT TLS",
    )
    mqtt_tls_client_cert: str | None = Field(
        default=None,
        description="Path to client certificate for MQTT TLS",
    )
    mqtt_tls_client_key: str | None = Field(
        default=None,
        description="Path to client key for MQTT TLS",
    )
    mqtt_topic: str = Field(
        default="slack/events",
        description="Topic verified payloads are published to",
    )
    mqtt_qos: int = Field(
        default=1,
        ge=1,
        le=2,
        description="QoS for published payloads (acknowledged levels only)",
    )
    mqtt_reconnect_base_delay: float = Field(
        default=1.0,
        description="Initial delay between reconnection attempts",
    )
    mqtt_reconnect_max_delay: float = Field(
        default=30.0,
        description="Maximum delay between reconnection attempts",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON (console renderer otherwise)",
    )

    # Tracing
    tracing_enabled: bool = Field(
        default=False,
        description="Enable OpenTelemetry tracing",
    )
    tracing_otlp_endpoint: str | None = Field(
        default=None,
        description="OTLP collector endpoint (e.g. http://localhost:4317)",
    )
    tracing_console: bool = Field(
        default=False,
        description="Emit traces to console (debug only)",
    )
    tracing_service_name: str | None = Field(
        default=None,
        description="Service name for tracing (defaults to hookrelay)",
    )

    # Startup validation
    startup_timeout: float = Field(
        default=30.0,
        description="Maximum time to wait for the broker during startup",
    )
    startup_retry_interval: float = Field(
        default=2.0,
        description="Interval between broker connection attempts during startup",
    )

    @property
    def signing_secret_bytes(self) -> bytes:
        """Raw signing secret (empty when unset)."""
        if self.signing_secret is None:
            return b""
        return self.signing_secret.get_secret_value().encode("utf-8")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
