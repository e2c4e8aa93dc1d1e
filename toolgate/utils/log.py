"""Logging utilities for toolgate.

Loggers are explicit handles: the CLI builds one with :func:`init_logger`
and passes it to the extractor, evaluator and dispatcher. Library code
defaults to :class:`NullLogger`.
"""

import json
import logging
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union


_LOG_RECORD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "asctime",
    "stacklevel",
    "taskName",
}

DEFAULT_LOG_FILE_NAME = "toolgate.log"


class StructuredFormatter(logging.Formatter):
    """Formatter with ISO timestamps and context."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return timestamp.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _LOG_RECORD_FIELDS and not key.startswith("_")
        }
        if extras:
            try:
                serialized = json.dumps(extras, sort_keys=True, ensure_ascii=True, default=str)
            except (TypeError, ValueError):
                serialized = str(extras)
            return f"{message} | {serialized}"
        return message


class ToolgateLogger:
    """Logger handle for one toolgate invocation."""

    def __init__(self, name: str = "toolgate", level: Optional[int] = None):
        self.logger = logging.getLogger(name)
        if level is None:
            level_name = os.getenv("TOOLGATE_LOG_LEVEL", "WARNING").upper()
            level = getattr(logging, level_name, logging.WARNING)
        # File handlers capture debug records while the console respects the configured level.
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        self._console_handler: Optional[logging.Handler] = None
        for handler in self.logger.handlers:
            if getattr(handler, "_toolgate_console", False):
                self._console_handler = handler
        if self._console_handler is None:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
            setattr(console_handler, "_toolgate_console", True)
            self.logger.addHandler(console_handler)
            self._console_handler = console_handler
        elif isinstance(self._console_handler, logging.StreamHandler):
            self._console_handler.setStream(sys.stderr)
        self._console_handler.setLevel(level)

        self._file_handler: Optional[logging.Handler] = None
        self._file_handler_path: Optional[Path] = None

    def set_console_level(self, level: int) -> None:
        if self._console_handler is not None:
            self._console_handler.setLevel(level)

    def attach_file_handler(self, log_file: Path) -> Path:
        """Attach or replace a file handler for logging to disk."""
        log_file.parent.mkdir(parents=True, exist_ok=True)
        if self._file_handler and self._file_handler_path == log_file:
            return log_file

        self.close_file_handler()

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter("%(asctime)s [%(levelname)s] %(message)s"))
        self.logger.addHandler(file_handler)
        self._file_handler = file_handler
        self._file_handler_path = log_file
        return log_file

    def close_file_handler(self) -> None:
        if self._file_handler is None:
            return
        self.logger.removeHandler(self._file_handler)
        self._file_handler.close()
        self._file_handler = None
        self._file_handler_path = None

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message."""
        self.logger.debug(message, *args, **kwargs)

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message."""
        self.logger.warning(message, *args, **kwargs)


class NullLogger:
    """Logger handle that discards everything."""

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None:
        pass

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None:
        pass


NULL_LOGGER = NullLogger()

LoggerLike = Union[ToolgateLogger, NullLogger]


def default_log_file() -> Path:
    """Debug log location used when the configuration names none."""
    return Path(tempfile.gettempdir()) / DEFAULT_LOG_FILE_NAME


def init_logger(debug: bool = False) -> ToolgateLogger:
    """Build the logger handle for one invocation.

    With ``debug`` the console shows debug records.
    """
    logger = ToolgateLogger()
    if debug:
        logger.set_console_level(logging.DEBUG)
    return logger


def enable_file_logging(logger: ToolgateLogger, log_file: Optional[Path] = None) -> Path:
    """Mirror every record to ``log_file`` (or the default temp-dir log)."""
    path = logger.attach_file_handler(log_file or default_log_file())
    logger.debug(f"[logging] File logging enabled at {path}")
    return path
