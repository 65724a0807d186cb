"""Relay HTTP server entry point."""

import sys
import time
from contextlib import AsyncExitStack, asynccontextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from hookrelay.common.errors import ConfigurationError, StartupValidationError
from hookrelay.common.http import RequestIdMiddleware
from hookrelay.common.logging import get_logger, setup_logging
from hookrelay.common.metrics import MetricsMiddleware, metrics_endpoint
from hookrelay.common.mqtt import MqttPublisher, QueuePublisher, validate_topic
from hookrelay.common.settings import Settings, get_settings
from hookrelay.common.tracing import setup_tracing
from hookrelay.relay.handler import ForwardingHandler
from hookrelay.relay.validation import RelayConfig

logger = get_logger(__name__)

# Every method reaches the handler so the validator decides on 405
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"]


def create_publisher(settings: Settings) -> MqttPublisher:
    """Create the MQTT publisher from settings."""
    return MqttPublisher(
        host=settings.mqtt_broker_host,
        port=settings.mqtt_broker_port,
        client_id=settings.mqtt_client_id,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        tls=settings.mqtt_tls_enabled,
        tls_ca_cert=settings.mqtt_tls_ca_cert,
        tls_client_cert=settings.mqtt_tls_client_cert,
        tls_client_key=settings.mqtt_tls_client_key,
        base_reconnect_delay=settings.mqtt_reconnect_base_delay,
        max_reconnect_delay=settings.mqtt_reconnect_max_delay,
        startup_retry_interval=settings.startup_retry_interval,
    )


class RelayServer:
    """Owns the relay's long-lived resources."""

    def __init__(self, settings: Settings, publisher: QueuePublisher | None = None):
        """
        Initialize server components.

        Raises:
            ConfigurationError: missing signing secret or invalid topic
        """
        self._settings = settings
        self._config = RelayConfig.from_settings(settings)
        self._topic = validate_topic(settings.mqtt_topic)
        self._owns_publisher = publisher is None
        self._publisher = publisher or create_publisher(settings)
        self._handler = ForwardingHandler(
            config=self._config,
            publisher=self._publisher,
            topic=self._topic,
            qos=settings.mqtt_qos,
            publish_timeout=settings.publish_timeout,
            body_read_timeout=settings.body_read_timeout,
        )
        self._exit_stack = AsyncExitStack()
        self._initialized = False
        self._start_time = time.time()

    @property
    def handler(self) -> ForwardingHandler:
        return self._handler

    async def startup(self) -> None:
        """Connect the publisher; the server must not serve without it."""
        logger.info(
            "Starting relay...",
            path=self._settings.relay_path,
            topic=self._topic,
            mqtt_host=self._settings.mqtt_broker_host,
            replay_window=self._config.timestamp_tolerance_seconds,
        )

        if self._owns_publisher and isinstance(self._publisher, MqttPublisher):
            try:
                await self._exit_stack.enter_async_context(
                    self._publisher.connect(startup_timeout=self._settings.startup_timeout)
                )
            except StartupValidationError as e:
                logger.error(
                    "Startup validation failed",
                    failed_checks=[
                        {"name": c.name, "status": c.status.value, "message": c.message}
                        for c in e.checks
                    ],
                )
                raise

        self._initialized = True
        logger.info("Relay ready", topic=self._topic)

    async def shutdown(self) -> None:
        """Clean up resources."""
        self._initialized = False
        await self._exit_stack.aclose()
        logger.info("Relay shutdown complete")

    def _publisher_connected(self) -> bool:
        return bool(getattr(self._publisher, "is_connected", True))

    async def handle_health(self, _request: Request) -> JSONResponse:
        """Liveness probe endpoint."""
        return JSONResponse({
            "status": "healthy",
            "uptime": round(time.time() - self._start_time, 1),
        })

    async def handle_ready(self, _request: Request) -> JSONResponse:
        """Readiness probe endpoint; ready once the publisher is connected."""
        checks = {
            "initialized": self._initialized,
            "publisher_connected": self._publisher_connected(),
        }
        all_ready = all(checks.values())
        return JSONResponse(
            {
                "status": "ready" if all_ready else "not_ready",
                "checks": checks,
            },
            status_code=200 if all_ready else 503,
        )

    async def handle_relay(self, request: Request) -> Response:
        return await self._handler.handle(request)


def create_app(
    settings: Settings | None = None,
    publisher: QueuePublisher | None = None,
) -> Starlette:
    """Create the Starlette application."""
    settings = settings or get_settings()
    server = RelayServer(settings, publisher=publisher)

    @asynccontextmanager
    async def lifespan(_app: Starlette):
        await server.startup()
        try:
            yield
        finally:
            await server.shutdown()

    routes = [
        Route(settings.relay_path, server.handle_relay, methods=ALL_METHODS),
        Route("/health", server.handle_health, methods=["GET"]),
        Route("/ready", server.handle_ready, methods=["GET"]),
        Route("/metrics", metrics_endpoint, methods=["GET"]),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.server = server

    app.add_middleware(
        MetricsMiddleware,
        exclude_paths=["/health", "/ready", "/metrics"],
    )
    app.add_middleware(RequestIdMiddleware)

    return app


def main() -> None:
    """Entry point for the relay server."""
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)
    if settings.tracing_enabled or settings.tracing_otlp_endpoint or settings.tracing_console:
        setup_tracing(
            service_name=settings.tracing_service_name or "hookrelay",
            otlp_endpoint=settings.tracing_otlp_endpoint,
            enable_console=settings.tracing_console,
        )
    try:
        app = create_app(settings)
    except ConfigurationError as e:
        logger.error("Invalid configuration, refusing to start", error=str(e))
        sys.exit(1)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
