"""
Structured Logging Configuration with structlog

JSON lines in production, coloured console output in development. Records
emitted while a request is in flight carry its request_id, the template
being composed and the current pipeline stage; the handler sets these
through LogContext so individual log calls stay short.

Image payloads never reach the log output: raw bytes in an event are
replaced by their length.
"""

import sys
import logging
import structlog
from typing import Optional, Any, Dict
from contextvars import ContextVar

# Context variables for request-scoped logging
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
template_var: ContextVar[Optional[str]] = ContextVar("template", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

_CONTEXT_VARS: Dict[str, ContextVar] = {
    "request_id": request_id_var,
    "template": template_var,
    "stage": stage_var,
}


def add_request_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Copy request_id, template and stage from context unless given explicitly."""
    for key, var in _CONTEXT_VARS.items():
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def drop_image_payloads(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Replace bytes values with their size."""
    for key, value in event_dict.items():
        if isinstance(value, (bytes, bytearray, memoryview)):
            event_dict[key] = f"<{len(value)} bytes>"
    return event_dict


def _service_context(service: str, version: str):
    def add_service_context(logger, method_name, event_dict):
        event_dict.setdefault("service", service)
        event_dict.setdefault("version", version)
        return event_dict

    return add_service_context


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    service: str = "avatar-banner-service",
    version: str = "1.0.0"
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
        service: Service name stamped on every record
        version: Application version stamped on every record
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Per-request client logs would duplicate upstream_fetches_total
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _service_context(service, version),
            add_request_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            drop_image_payloads,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """
    Set request-scoped logging fields for the duration of a block.

    Only the fields passed are changed; nested contexts restore the outer
    values on exit.

    Usage:
        with LogContext(template="enter"):
            with LogContext(stage="fetch"):
                logger.info("stage_started")
    """

    def __init__(
        self,
        request_id: Optional[str] = None,
        template: Optional[str] = None,
        stage: Optional[str] = None
    ):
        self._values = {
            key: value
            for key, value in (("request_id", request_id), ("template", template), ("stage", stage))
            if value
        }
        self._tokens = []

    def __enter__(self):
        for key, value in self._values.items():
            var = _CONTEXT_VARS[key]
            self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
        return False
