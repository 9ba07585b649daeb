"""Logging configuration module."""

from logging import (
    CRITICAL,
    DEBUG,
    ERROR,
    INFO,
    WARNING,
    Handler,
    Logger,
    StreamHandler,
    getLogger,
)
from typing import cast

import structlog
from structlog import dev, processors, stdlib
from structlog.processors import JSONRenderer, TimeStamper, dict_tracebacks
from structlog.stdlib import BoundLogger

from address_resolver.core.config import settings

# Define log levels
LOG_LEVELS: dict[str, int] = {
    "debug": DEBUG,
    "info": INFO,
    "warning": WARNING,
    "error": ERROR,
    "critical": CRITICAL,
}

PACKAGE_LOGGER = "address_resolver"


def resolve_level(level: str | int | None) -> int:
    """Translate a level name (any case) or number into a logging level.

    Unknown names fall back to INFO.
    """
    if level is None:
        return INFO
    if isinstance(level, int):
        return level
    return LOG_LEVELS.get(level.lower(), INFO)


def configure_logging(
    testing: bool = False,
    level: str | int | None = None,
    json_logs: bool | None = None,
) -> None:
    """Configure structured logging for the resolver.

    Records emitted by library modules through ``logging.getLogger(__name__)``
    are rendered by the same structlog processors as ``get_logger()`` output.

    Args:
        testing: Whether the package is running under the test suite
        level: Log level name or number; defaults to LOG_LEVEL
        json_logs: Render JSON outside of tests; defaults to JSON_LOGS
    """
    log_level = resolve_level(settings.LOG_LEVEL if level is None else level)
    if json_logs is None:
        json_logs = settings.JSON_LOGS

    root_logger: Logger = getLogger()
    root_logger.setLevel(log_level)

    package_logger: Logger = getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(log_level)
    # Records propagate to the root handler; avoid double emission.
    package_logger.propagate = True

    handler: Handler = StreamHandler()
    handler.setLevel(log_level)

    shared_processors = [
        stdlib.add_logger_name,
        stdlib.add_log_level,
        stdlib.PositionalArgumentsFormatter(),
        TimeStamper(fmt="%Y-%m-%d %H:%M:%S.%f"),
        dict_tracebacks,
    ]

    use_json = json_logs and not testing

    structlog.configure(
        processors=[
            stdlib.filter_by_level,
            *shared_processors,
            processors.format_exc_info,
            JSONRenderer() if not testing else processors.KeyValueRenderer(),
        ],
        context_class=dict,
        logger_factory=stdlib.LoggerFactory(),
        wrapper_class=stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = stdlib.ProcessorFormatter(
        processor=processors.JSONRenderer() if use_json else dev.ConsoleRenderer(),
        foreign_pre_chain=shared_processors,
    )
    handler.setFormatter(formatter)

    # Clear existing handlers to prevent duplicates
    root_logger.handlers = []
    package_logger.handlers = []

    root_logger.addHandler(handler)


def get_logger() -> BoundLogger:
    """Get a configured logger instance.

    Returns:
        A structured logger instance.
    """
    return cast(BoundLogger, structlog.get_logger())


def get_operation_logger(operation: str, **context: object) -> BoundLogger:
    """Get a logger bound to a geocoding operation.

    Args:
        operation: Operation name, e.g. ``batch_geocode``
        **context: Extra key/value pairs to bind

    Returns:
        Logger with the operation context bound
    """
    logger: BoundLogger = get_logger().bind(operation=operation)
    if context:
        logger = logger.bind(**context)
    return logger
