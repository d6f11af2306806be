"""Structured logging configuration using structlog.

Console output for interactive use, JSON lines for scripts. Everything goes
to stderr; stdout belongs to the CLI's JSON results. Use get_logger()
instead of print().

Values logged under a secret key (password, token, session cookie) are
replaced before rendering. Log a prefix under another key when a token has
to be recognisable in the output, e.g. ``token_prefix=token[:6]``.
"""

import logging
import sys
from typing import Any

import structlog

# Event keys whose values never reach the output, compared case-insensitively
SECRET_KEYS = frozenset(
    {"password", "token", "session", "session_id", "cookie", "cookies", "otp"}
)
REDACTED = "***"


def _redact(values: dict) -> dict:
    return {
        key: REDACTED if str(key).lower() in SECRET_KEYS and value is not None else value
        for key, value in values.items()
    }


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor masking secret values, including one level of dicts.

    A nested mapping such as ``headers={"Cookie": "SESSION=..."}`` is masked
    as well.
    """
    for key, value in event_dict.items():
        if isinstance(value, dict):
            event_dict[key] = _redact(value)
    return _redact(event_dict)


def setup_logging(json_output: bool = False, log_level: str = "INFO") -> None:
    """Configure structlog for the CLI.

    Args:
        json_output: Render JSON lines instead of the console format.
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # playwright and urllib3 log through stdlib logging
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)


def get_logger(name: str) -> structlog.BoundLogger:
    """Logger bound to the calling module's name."""
    return structlog.get_logger(name)
