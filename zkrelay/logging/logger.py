"""
Logger Implementation
=====================

Configures structlog for structured logging with:
- JSON output in production
- Colored console output in development
- Per-pipeline context binding (request_id, claimant_id, attestation_id)
- Redaction of claims, keys and seed phrases, including nested payloads

Version: 0.1.0
"""

import logging
import sys
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger


REDACTED = "***REDACTED***"

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "api_key",
        "secret",
        "token",
        "authorization",
        "private_key",
        "private_claim",
        "income",
        "seed",
        "mnemonic",
    }
)

NOISY_LOGGERS = ("httpx", "httpcore", "web3", "urllib3", "asyncio")


def is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact(value: Any) -> Any:
    """Recursively replace sensitive mapping entries, descending into lists."""
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and is_sensitive(k) else redact(v)
            for k, v in value.items()
        }
    if type(value) in (list, tuple):
        return type(value)(redact(item) for item in value)
    return value


def _redact_event(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    return redact(event_dict)


def _stamp_service(service_name: str) -> Callable[[WrappedLogger, str, EventDict], EventDict]:
    def stamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("version", "0.1.0")
        return event_dict

    return stamp


def _pipeline_processors(service_name: str) -> list[Processor]:
    # Redaction runs after contextvars merge so bound values are covered too.
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        _stamp_service(service_name),
        _redact_event,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(json_logs: bool) -> tuple[Processor, Processor]:
    """Return the exception processor and the final renderer for the output mode."""
    if json_logs:
        return structlog.processors.format_exc_info, structlog.processors.JSONRenderer()
    console = structlog.dev.ConsoleRenderer(
        colors=True,
        exception_formatter=structlog.dev.RichTracebackFormatter(
            show_locals=False,
            max_frames=10,
        ),
    )
    return structlog.dev.set_exc_info, console


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: str = "zkrelay",
) -> None:
    """
    Configure structlog and route stdlib logging through the same pipeline.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Emit JSON lines instead of the colored console format
        service_name: Stamped on every entry as ``service``
    """
    level = logging.getLevelName(log_level.upper())
    exc_processor, renderer = _renderer(json_logs)
    chain = [*_pipeline_processors(service_name), exc_processor]

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> "BoundLogger":
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("attestation_submitted", attestation_id=42)
    """
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent logs in this async context.

    Each pipeline runs in its own task, so bindings made inside it do not
    leak into other pipelines.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
