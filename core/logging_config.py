"""
Logging setup for the connection manager and its transports.

Console output is colored for development and JSON in production; rotating
files keep the full log plus an errors-only log. Structured fields travel
with each call as ``extra={"extra_data": {...}}`` and are rendered by both
formatters. Every record is stamped with the thread and asyncio task it was
emitted from, since transports report from their own threads.
"""

import asyncio
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

from config import LOGGING_CONFIG
from .exceptions import ConnectionManagerError, error_message

# Library loggers are chatty at DEBUG (frame dumps, keepalive pings)
LIBRARY_LOG_LEVELS = {
    "websockets": logging.WARNING,
    "websocket": logging.WARNING,
    "asyncio": logging.WARNING,
}

MAIN_LOG_FILE = "connection_manager.log"
ERROR_LOG_FILE = "errors.log"


class ExecutionContextFilter(logging.Filter):
    """Adds the emitting asyncio task name, or '-' off the event loop"""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        record.task_name = task.get_name() if task is not None else "-"
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
            "task": getattr(record, "task_name", "-"),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["context"] = extra_data

        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Compact colored console lines, structured fields appended as key=value"""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[92m",     # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",    # Red
        "CRITICAL": "\033[95m", # Magenta
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        origin = record.module
        if record.threadName != "MainThread":
            origin = f"{origin}@{record.threadName}"

        line = (f"[{datetime.now().strftime('%H:%M:%S')}] "
                f"[{color}{record.levelname}{self.RESET}] [{origin}] {record.getMessage()}")

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            fields = " ".join(f"{key}={value}" for key, value in extra_data.items())
            line += f" {self.DIM}{fields}{self.RESET}"

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


class LoggingConfig:
    """Installs handlers on the root logger once"""

    def __init__(self,
                 log_level: str = "INFO",
                 log_dir: Optional[str] = None,
                 enable_file_logging: bool = True,
                 enable_console_logging: bool = True,
                 structured_logging: bool = False,
                 max_log_size_mb: int = 10,
                 backup_count: int = 5):
        """
        Args:
            log_level: Level name for the root logger and every handler
            log_dir: Directory for rotating log files (defaults to ./logs)
            enable_file_logging: Write connection_manager.log and errors.log
            enable_console_logging: Write to stdout
            structured_logging: JSON output instead of colored/plain text
            max_log_size_mb: Size at which a log file is rotated
            backup_count: Rotated files kept per log
        """
        self.log_level = getattr(logging, log_level.upper())
        self.log_dir = Path(log_dir) if log_dir else Path("./logs")
        self.enable_file_logging = enable_file_logging
        self.enable_console_logging = enable_console_logging
        self.structured_logging = structured_logging
        self.max_log_size_mb = max_log_size_mb
        self.backup_count = backup_count

        self._configured = False

    def configure(self) -> None:
        if self._configured:
            return

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(self.log_level)
        context_filter = ExecutionContextFilter()

        if self.enable_console_logging:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(self.log_level)
            console.setFormatter(StructuredFormatter() if self.structured_logging
                                 else ColoredConsoleFormatter())
            console.addFilter(context_filter)
            root_logger.addHandler(console)

        if self.enable_file_logging:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            for filename, level in ((MAIN_LOG_FILE, self.log_level), (ERROR_LOG_FILE, logging.ERROR)):
                handler = self._rotating_handler(filename, level)
                handler.addFilter(context_filter)
                root_logger.addHandler(handler)

        for logger_name, level in LIBRARY_LOG_LEVELS.items():
            logging.getLogger(logger_name).setLevel(level)

        self._configured = True

        logging.getLogger(__name__).info("Logging configured", extra={"extra_data": {
            "level": logging.getLevelName(self.log_level),
            "log_dir": str(self.log_dir) if self.enable_file_logging else None,
            "structured": self.structured_logging
        }})

    def _rotating_handler(self, filename: str, level: int) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=self.max_log_size_mb * 1024 * 1024,
            backupCount=self.backup_count,
            encoding="utf-8"
        )
        handler.setLevel(level)
        if self.structured_logging:
            handler.setFormatter(StructuredFormatter())
        else:
            handler.setFormatter(logging.Formatter(
                "[%(asctime)s] [%(levelname)s] [%(name)s] [%(threadName)s/%(task_name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
        return handler


# Global logging configuration instance
_logging_config: Optional[LoggingConfig] = None


def setup_logging(config_dict: Optional[Dict[str, Any]] = None) -> None:
    """
    Configure logging from a LOGGING_CONFIG style dict.

    Keys missing from config_dict fall back to LOGGING_CONFIG. Calling it
    again replaces the previous configuration.
    """
    global _logging_config

    _logging_config = LoggingConfig(**{**LOGGING_CONFIG, **(config_dict or {})})
    _logging_config.configure()


def get_logger(name: str) -> logging.Logger:
    """Logger for name, configuring logging with defaults on first use"""
    if _logging_config is None:
        setup_logging()

    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, message: str, **context) -> None:
    logger.log(level, message, extra={"extra_data": context})


def log_error_with_context(logger: logging.Logger, error: BaseException,
                           operation: str, **context) -> None:
    """Log error with its type and, for manager errors, their details"""
    fields = dict(error.details) if isinstance(error, ConnectionManagerError) else {}
    fields.update(context)
    fields.update(operation=operation, error_type=type(error).__name__)
    log_with_context(logger, logging.ERROR, f"Error in {operation}: {error_message(error)}", **fields)
