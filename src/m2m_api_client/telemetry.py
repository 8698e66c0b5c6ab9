"""Tracing and structured logging for the M2M API client.

The client applies its TelemetryConfig here when it is constructed. Spans
cover token exchanges and outbound requests; log events never carry the
client secret or token values.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Generator, MutableMapping

    from .config import TelemetryConfig

DEFAULT_SERVICE_NAME = "m2m-api-client"
INSTRUMENTATION_VERSION = "0.1.0"

_LOG_LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}

SENSITIVE_KEYS = frozenset({"client_secret", "access_token", "authorization", "token"})
REDACTED = "[redacted]"

_tracer: trace.Tracer | None = None
_logger: structlog.BoundLogger | None = None
_config: TelemetryConfig | None = None


def _service_name() -> str:
    return _config.service_name if _config is not None else DEFAULT_SERVICE_NAME


def get_tracer() -> trace.Tracer:
    """Get or create the client tracer."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(_service_name(), INSTRUMENTATION_VERSION)
    return _tracer


def get_logger() -> structlog.BoundLogger:
    """Get or create the client logger."""
    global _logger
    if _logger is None:
        _logger = structlog.get_logger(_service_name())
    return _logger


def current_telemetry_config() -> TelemetryConfig | None:
    """Get the telemetry configuration last applied, if any."""
    return _config


def redact_sensitive(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Mask credential and token values in a log event."""
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def configure_telemetry(config: TelemetryConfig) -> None:
    """Apply a client's telemetry settings process-wide.

    Applying the same settings again is a no-op, so every client may call
    this on construction.

    Args:
        config: Telemetry configuration.
    """
    global _tracer, _logger, _config

    if config == _config:
        return

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LOG_LEVELS.get(config.log_level.upper(), 20)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    _config = config
    _logger = structlog.get_logger(config.service_name)
    if config.enabled:
        _tracer = trace.get_tracer(config.service_name, INSTRUMENTATION_VERSION)
    else:
        _tracer = trace.NoOpTracer()


def reset_telemetry() -> None:
    """Forget applied settings; the next client reapplies its own."""
    global _tracer, _logger, _config
    _tracer = None
    _logger = None
    _config = None


@contextmanager
def trace_operation(
    name: str,
    *,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """Open a span for an operation and record any exception on it.

    Args:
        name: Name of the operation.
        attributes: Optional span attributes.

    Yields:
        The active span.
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
