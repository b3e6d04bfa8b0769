"""structlog setup with a stdlib bridge.

JSON lines in production, ConsoleRenderer when debugging. uvicorn, SQLAlchemy
and httpx records pass through the same processor chain. Every entry gets the
request's correlation id, and committed amounts are scrubbed so a private
contribution cannot leak through the logs.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

# Keys whose values must never reach a log sink
REDACTED_KEYS = frozenset({"amount", "committed_amount", "zk_proof_ref", "authorization"})

_QUIET_LOGGERS = {
    "uvicorn.access": "WARNING",
    "httpx": "WARNING",
    "sqlalchemy.engine": "WARNING",
}


def add_correlation_id(logger, method, event_dict):
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def redact_private_fields(logger, method, event_dict):
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        redact_private_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Install the processor chain for structlog and the stdlib root logger.

    Must run before any module calls ``structlog.get_logger``: loggers cache
    the chain on first use.

    Args:
        log_level: Root level name, e.g. "INFO"
        json_logs: JSONRenderer when True, ConsoleRenderer otherwise
    """
    shared = _shared_processors()
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": shared,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": level} for name, level in _QUIET_LOGGERS.items()},
    })

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
