"""
Logging configuration for SQL Advisor

Every record carries a `request_id` field. Inside `request_scope()` it is
the id of the recommendation request being served, so lines of a request
that waited behind another one can still be told apart; elsewhere it is "-".
"""

import sys
import logging
import itertools
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, Optional
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime

from sqladvisor.core.constants import APP_NAME, LOG_FILE


CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(request_id)s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(request_id)s | %(name)s | %(filename)s:%(lineno)d | %(message)s"

_request_id: ContextVar[str] = ContextVar("sqladvisor_request_id", default="-")
_request_counter = itertools.count(1)


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request id"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag log records emitted in this context with a request id.

    Works across awaits: asyncio tasks copy the context they start in.
    """
    request_id = request_id or f"req-{next(_request_counter)}"
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


def current_request_id() -> str:
    return _request_id.get()


class ColoredFormatter(logging.Formatter):
    """Console formatter, level names colored when writing to a terminal"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and hasattr(sys.stdout, 'isatty') and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        # Color a copy; the file handler formats the same record
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(colored)


class SQLAdvisorLogger:
    """Owns the handlers of the application logger (one per process)"""

    _instance: Optional['SQLAdvisorLogger'] = None

    def __new__(cls):
        if cls._instance is None:
            instance = super().__new__(cls)
            instance.logger = logging.getLogger(APP_NAME)
            instance.logger.setLevel(logging.INFO)
            instance.file_path = None
            cls._instance = instance
        return cls._instance

    def setup(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        file_enabled: bool = False,
        retention_days: int = 7,
        console_colors: bool = True,
    ) -> logging.Logger:
        """
        (Re)build console and file handlers

        Args:
            level: Console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for the rotated log file
            file_enabled: Write DEBUG and above to log_dir
            retention_days: Daily files kept after rotation
            console_colors: Colored level names on a terminal

        Returns:
            The application logger
        """
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self.file_path = None

        console_level = getattr(logging, level.upper(), logging.INFO)
        context_filter = RequestContextFilter()

        console = logging.StreamHandler(sys.stdout)
        console.setLevel(console_level)
        console.addFilter(context_filter)
        console.setFormatter(ColoredFormatter(CONSOLE_FORMAT, "%H:%M:%S", use_colors=console_colors))
        self.logger.addHandler(console)

        logger_level = console_level
        if file_enabled and log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            self.file_path = log_dir / LOG_FILE

            file_handler = TimedRotatingFileHandler(
                self.file_path,
                when='midnight',
                backupCount=max(1, int(retention_days)),
                encoding='utf-8',
            )
            file_handler.suffix = "%Y-%m-%d"
            file_handler.setLevel(logging.DEBUG)
            file_handler.addFilter(context_filter)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, "%Y-%m-%d %H:%M:%S"))
            self.logger.addHandler(file_handler)
            logger_level = logging.DEBUG

        self.logger.setLevel(logger_level)
        return self.logger

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        return self.logger.getChild(name) if name else self.logger


_app_logger: Optional[SQLAdvisorLogger] = None


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    file_enabled: bool = False,
    retention_days: int = 7,
    console_colors: bool = True,
) -> logging.Logger:
    """Configure application logging; call once at startup"""
    global _app_logger
    _app_logger = SQLAdvisorLogger()
    return _app_logger.setup(
        level=level,
        log_dir=log_dir,
        file_enabled=file_enabled,
        retention_days=retention_days,
        console_colors=console_colors,
    )


def setup_logging_from_settings(settings=None) -> logging.Logger:
    """Configure logging from the `logging` settings section"""
    if settings is None:
        from sqladvisor.core.config import get_settings
        settings = get_settings()
    return setup_logging(
        level=settings.logging.level,
        log_dir=settings.logs_dir,
        file_enabled=settings.logging.file_enabled,
        retention_days=settings.logging.retention_days,
        console_colors=settings.logging.console_colors,
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance

    Args:
        name: Optional child name (e.g., 'ai.ollama', 'ai.service')

    Example:
        >>> logger = get_logger('ai.ollama')
        >>> logger.info('Stream opened')
    """
    global _app_logger
    if _app_logger is None:
        _app_logger = SQLAdvisorLogger()
        _app_logger.setup()
    return _app_logger.get_logger(name)


def log_exception(logger: logging.Logger, exc: BaseException, message: str = "") -> None:
    """Log an exception with its traceback"""
    logger.error(f"{message or 'Exception occurred'}: {exc}", exc_info=exc)


class LogContext:
    """
    Log start, end and duration of an operation

    Example:
        >>> with LogContext(logger, "Recommendation via Ollama") as ctx:
        ...     ...
        >>> ctx.duration
        # Logs: "Recommendation via Ollama... started"
        # Logs: "Recommendation via Ollama... completed in 1.23s"
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time: Optional[datetime] = None
        self.duration: float = 0.0

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = (datetime.now() - self.start_time).total_seconds()
        if exc_type is not None:
            self.logger.error(f"{self.operation}... failed after {self.duration:.2f}s: {exc_val!r}")
        else:
            self.logger.log(self.level, f"{self.operation}... completed in {self.duration:.2f}s")
        return False
