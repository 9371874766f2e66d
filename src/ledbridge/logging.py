"""Structured logging for the bridge, built on structlog over stdlib logging.

Context such as the ingestion domain and trigger of the running cycle is
carried through structlog.contextvars, so every event emitted while a cycle
is in flight (including from the gateway and the broker) is tagged with it.
Records from third-party stdlib loggers (uvicorn, aiomqtt) go through the
same pre-chain and come out in the same format.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Third-party loggers that are too chatty at DEBUG
_QUIET_LOGGERS = ("aiosqlite", "asyncio", "uvicorn.access")


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format.lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Route structlog and stdlib records through one stream handler.

    Args:
        log_level: Root level name; unknown names fall back to INFO.
        log_format: "json" for machine-readable lines, anything else
                    renders for a terminal.
    """
    structlog.configure(
        processors=[
            *_pre_chain(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
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
    return structlog.get_logger(name)


@contextmanager
def cycle_context(domain: str, trigger: str) -> Iterator[None]:
    """Bind the ingestion domain and trigger to all log events in this task."""
    with structlog.contextvars.bound_contextvars(domain=domain, trigger=trigger):
        yield
