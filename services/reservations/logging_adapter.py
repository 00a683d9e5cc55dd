"""
Safe logging adapter for the reservation service.
Configures structlog once and hands out loggers that accept the
event-name-plus-keywords style whether the underlying logger is structlog or stdlib.
"""

from typing import Any, Optional
import logging
import sys

import structlog


_CONFIGURED = False


def configure_logging(level: str = "INFO", fmt: str = "json", stream=None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: 'json' for structured output or 'console' for development
        stream: Output stream, stdout by default
    """
    global _CONFIGURED

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def is_configured() -> bool:
    return _CONFIGURED


class SafeLogger:
    """
    Logging adapter that accepts keyword context on every call.
    Structlog loggers receive the keywords directly; stdlib loggers get them
    under extra['fields'] so they never collide with LogRecord attributes.
    """

    def __init__(self, logger: Any):
        self._logger = logger
        self._is_structlog = hasattr(logger, 'bind')

    def _log(self, log_level: str, event: str, **kwargs) -> None:
        if self._is_structlog:
            getattr(self._logger, log_level)(event, **kwargs)
            return

        special_kwargs = {}
        for key in ['exc_info', 'stack_info', 'stacklevel']:
            if key in kwargs:
                special_kwargs[key] = kwargs.pop(key)

        extra_dict = dict(kwargs.pop('extra', {}) or {})
        if kwargs:
            extra_dict['fields'] = kwargs

        getattr(self._logger, log_level)(event, extra=extra_dict, **special_kwargs)

    def bind(self, **kwargs) -> 'SafeLogger':
        """Bind context (session_id, bucket...) for structlog; stdlib returns self."""
        if self._is_structlog:
            return SafeLogger(self._logger.bind(**kwargs))
        return self

    def debug(self, event: str, **kwargs) -> None:
        self._log('debug', event, **kwargs)

    def info(self, event: str, **kwargs) -> None:
        self._log('info', event, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self._log('warning', event, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self._log('error', event, **kwargs)

    def critical(self, event: str, **kwargs) -> None:
        self._log('critical', event, **kwargs)

    warn = warning


def get_safe_logger(name: Optional[str] = None) -> SafeLogger:
    """
    Get a SafeLogger backed by structlog.

    Args:
        name: Logger name, e.g. "reservations.time_slot_manager"
    """
    logger = structlog.get_logger(name) if name else structlog.get_logger()
    return SafeLogger(logger)
