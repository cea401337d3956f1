"""
Structured logging setup for PFSFill.

Provides pass ID tracking and redaction of borrower-identifying values.
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional

import structlog

# Context variable for the current fill pass (safe across threads and tasks)
pass_id: ContextVar[str] = ContextVar("pass_id", default="")

# Keys whose values identify the borrower and never reach the logs
SENSITIVE_FIELDS = {
    "borrower_name", "borrowername",
    "ssn", "social_security",
    "account_number", "routing_number",
    "address",
}


def get_pass_id() -> str:
    """Get the current fill pass ID."""
    return pass_id.get()


@contextmanager
def bind_pass_id(value: Optional[str] = None) -> Iterator[str]:
    """Bind a pass ID for the duration of a fill pass."""
    value = value or str(uuid.uuid4())
    token = pass_id.set(value)
    try:
        yield value
    finally:
        pass_id.reset(token)


def redact_sensitive_data(data: dict, depth: int = 0) -> dict:
    """
    Recursively redact sensitive fields from a dictionary.

    Args:
        data: Dictionary to redact
        depth: Current recursion depth (to prevent infinite loops)

    Returns:
        Dictionary with sensitive values replaced with "[REDACTED]"
    """
    if depth > 5 or not isinstance(data, dict):
        return data

    redacted = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_data(value, depth + 1)
        elif isinstance(value, list):
            redacted[key] = [
                redact_sensitive_data(item, depth + 1) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            redacted[key] = value

    return redacted


def add_pass_id_processor(
    logger: Any, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor that adds the fill pass ID to all log entries."""
    current = get_pass_id()
    if current:
        event_dict["pass_id"] = current
    return event_dict


def redact_sensitive_processor(
    logger: Any, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor that redacts sensitive data from log entries."""
    return redact_sensitive_data(event_dict)


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog on top of the standard library logging module.

    Args:
        level: Minimum log level name.
        json_output: Render JSON lines instead of the console renderer.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_pass_id_processor,
            redact_sensitive_processor,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
