############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# logging_config.py: Structured logging configuration using structlog
#
############################################################

"""Structured logging for the daemon.

structlog events and stdlib records (uvicorn, httpx) share one processor
chain and one set of handlers, so everything lands in the same stream.
"""

import logging
import sys
from typing import List, Optional

import structlog
from structlog.types import Processor

from temper.settings import Settings, get_settings

# Loggers that would otherwise report every snapshot request and llama poll
_CHATTY_LOGGERS = ("uvicorn.access", "uvicorn.error", "httpx", "httpcore")

_SHARED_PROCESSORS: List[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def _handlers(settings: Settings, level: int) -> List[logging.Handler]:
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings.log_format),
        ],
    )
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
    return handlers


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structlog and the root logger; ``--verbose`` forces DEBUG."""
    settings = settings or get_settings()
    level = getattr(logging, settings.effective_log_level.upper(), logging.INFO)

    structlog.configure(
        processors=_SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers = _handlers(settings, level)
    root.setLevel(level)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
