"""Structured logging for the fee settlement service (structlog over stdlib logging).

Events are snake_case names with key/value context, e.g.::

    logger.info("fee_collected", transaction_id=txn.id, ledger_tx_hash=tx_hash)

Context bound with structlog.contextvars (the HTTP middleware binds
``request_id``) is merged into every line logged while that context is active,
including lines from settlement work started by the request.
"""

import logging
import os
from decimal import Decimal
from typing import Any

import structlog

from feesettle.money import Money

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("uvicorn.access", "aiosqlite")


def stringify_amounts(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Render Money and Decimal values as plain decimal strings.

    Keeps "1.0000000" (not "Decimal('1.0000000')") in JSON output and
    never lets an amount go through float.
    """
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = format(value, "f")
        elif isinstance(value, Money):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route structlog and stdlib logging through one handler on stderr.

    Args:
        log_level: Root level name ("DEBUG", "INFO", ...).
        log_format: "json" (production) or "console" (development). Falls back
            to the LOG_FORMAT environment variable, then "console".
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        stringify_amounts,
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
