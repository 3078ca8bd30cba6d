"""
Logging configuration for the offline cache sync layer.

Routes structlog events through the standard library so that every
component logger (``structlog.get_logger(__name__)``) shares one set of
handlers, and binds correlation IDs per sync run.
"""

import logging
import sys
from typing import Optional, Union
from uuid import uuid4

import structlog


class CorrelationFilter(logging.Filter):
    """Add the bound correlation id to plain stdlib log records."""

    def filter(self, record):
        context = structlog.contextvars.get_contextvars()
        record.correlation_id = context.get('correlation_id', 'unknown')
        return True


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(message)s'

    # Third-party loggers (reduce noise)
    THIRD_PARTY_LEVELS = {
        'aiohttp': logging.WARNING,
        'redis': logging.WARNING,
        'asyncio': logging.WARNING,
    }

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'json',
        console_output: bool = True,
    ):
        """
        Setup logging for structlog and the standard library.

        Args:
            level: Logging level
            format_type: 'json' or 'console'
            console_output: Enable console output
        """
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())

        shared_processors = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt='iso', utc=True),
        ]

        if format_type == 'json':
            renderer = structlog.processors.JSONRenderer()
        else:
            renderer = structlog.dev.ConsoleRenderer()

        structlog.configure(
            processors=shared_processors + [
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        if console_output:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(level)
            handler.setFormatter(structlog.stdlib.ProcessorFormatter(
                processor=renderer,
                foreign_pre_chain=shared_processors,
            ))
            handler.addFilter(CorrelationFilter())
            root_logger.addHandler(handler)

        for logger_name, logger_level in cls.THIRD_PARTY_LEVELS.items():
            logging.getLogger(logger_name).setLevel(logger_level)

        structlog.get_logger(__name__).info(
            "Logging system initialized",
            level=logging.getLevelName(level),
            format_type=format_type,
            console_output=console_output,
        )


class CorrelationContext:
    """Context manager binding a correlation id for every log event inside it."""

    def __init__(self, correlation_id_value: Optional[str] = None, **extra):
        self.correlation_id_value = correlation_id_value or str(uuid4())
        self.extra = extra
        self._tokens = None

    def __enter__(self):
        self._tokens = structlog.contextvars.bind_contextvars(
            correlation_id=self.correlation_id_value,
            **self.extra
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._tokens:
            structlog.contextvars.reset_contextvars(**self._tokens)
            self._tokens = None


def get_correlation_id() -> Optional[str]:
    """Get the correlation id bound to the current context, if any."""
    return structlog.contextvars.get_contextvars().get('correlation_id')
