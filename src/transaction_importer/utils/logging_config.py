"""Logging setup shared by the CLI, the pipeline and its stages."""

import logging
import sys
import time
from pathlib import Path

ROOT_LOGGER_NAME = "transaction_importer"

DEFAULT_LOG_FILE = "transaction_importer.log"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Context keys whose values are masked in LogContext messages
SENSITIVE_FIELDS = frozenset({"api_key", "token", "secret", "password", "account_number", "card_number"})


def _mask(context: dict[str, object]) -> str:
    return ", ".join(
        f"{key}={'***' if key.lower() in SENSITIVE_FIELDS else value}"
        for key, value in context.items()
    )


def _make_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
) -> logging.Logger:
    """Configure the package logger.

    Calling this again replaces (and closes) the handlers from the
    previous call.

    Args:
        level: Level name such as "DEBUG" or "WARNING"; unknown names mean INFO.
        log_file: Log file path. None means DEFAULT_LOG_FILE, and an empty
            string turns file logging off.
        console_output: Also log to stderr.

    Returns:
        The package logger.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    if log_file is None:
        log_file = DEFAULT_LOG_FILE
    if log_file:
        logger.addHandler(
            _make_handler(logging.FileHandler(Path(log_file), encoding="utf-8"), numeric_level)
        )
    if console_output:
        logger.addHandler(_make_handler(logging.StreamHandler(sys.stderr), numeric_level))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the package logger for a module.

    ``get_logger(__name__)`` inside the package is used as-is; any other
    name is placed under the package logger.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class LogContext:
    """Logs when an operation starts, how long it took, and whether it failed.

    Exceptions are logged with their traceback and then re-raised.
    """

    def __init__(self, logger: logging.Logger, operation: str, **context: object):
        """Initialize log context.

        Args:
            logger: Logger to write to.
            operation: Short name of the operation, like "import run".
            **context: Values included in the start message.
        """
        self.logger = logger
        self.operation = operation
        self.context = context
        self.elapsed = 0.0
        self._started = 0.0

    def __enter__(self) -> "LogContext":
        self._started = time.perf_counter()
        details = _mask(self.context)
        self.logger.debug(f"Starting {self.operation}" + (f" ({details})" if details else ""))
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> bool:
        self.elapsed = time.perf_counter() - self._started
        if exc_type is None:
            self.logger.debug(f"Completed {self.operation} in {self.elapsed:.2f}s")
        else:
            self.logger.error(
                f"{self.operation} failed after {self.elapsed:.2f}s: {exc_type.__name__}: {exc_val}",
                exc_info=True,
            )
        return False
