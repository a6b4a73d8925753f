"""
Logging configuration for the stain-threshold pipeline.

Usage:
    from stainthresh.utils.logging import get_logger, setup_logging

    # Get a logger for your module
    logger = get_logger(__name__)

    # Setup logging at application start
    setup_logging(level="INFO", log_file="/path/to/output/run.log")

    logger.info("Processing %d regions", n_regions)
    logger.warning("Region %d skipped: %s", index, reason)
"""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Union


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to log levels for terminal output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        # Colour a copy so file handlers sharing the record stay plain
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = (
                f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
            )
        return super().format(record)


_loggers: dict[str, logging.Logger] = {}
_initialized = False

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance
    """
    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)
    return _loggers[name]


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    log_dir: Optional[Union[str, Path]] = None,
    console: bool = True,
    colored: bool = True,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Setup logging for an application embedding the pipeline.

    The library itself never calls this; hosts and scripts do.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Explicit path to log file
        log_dir: Directory for auto-named log file (uses timestamp)
        console: Whether to output to console
        colored: Whether to use colored output in console
        format_string: Custom format string

    Returns:
        Root logger instance
    """
    global _initialized

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if format_string is None:
        format_string = DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if _initialized:
        root_logger.handlers.clear()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        if colored and sys.stdout.isatty():
            console_handler.setFormatter(ColoredFormatter(format_string))
        else:
            console_handler.setFormatter(logging.Formatter(format_string))
        root_logger.addHandler(console_handler)

    if log_file or log_dir:
        if log_file:
            log_path = Path(log_file)
        else:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_path = Path(log_dir) / f"stainthresh_{timestamp}.log"

        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, mode='a')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(format_string))
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {log_path}")

    _initialized = True
    return root_logger


def log_parameters(logger: logging.Logger, params: dict, title: str = "Parameters") -> None:
    """
    Log a dictionary of run parameters as a framed block.

    Args:
        logger: Logger instance
        params: Dictionary of parameters to log
        title: Title for the parameter block
    """
    logger.info(f"{'='*50}")
    logger.info(f"{title}")
    logger.info(f"{'='*50}")
    for key, value in params.items():
        logger.info(f"  {key}: {value}")
    logger.info(f"{'='*50}")


def format_duration(duration_seconds: float) -> str:
    """Human-readable duration ("12.3 seconds", "4.1 minutes", ...)."""
    if duration_seconds >= 3600:
        return f"{duration_seconds/3600:.1f} hours"
    if duration_seconds >= 60:
        return f"{duration_seconds/60:.1f} minutes"
    return f"{duration_seconds:.1f} seconds"


class ProcessingTimer:
    """Context manager for timing an operation and logging its outcome."""

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.info(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time
        if exc_type is not None:
            self.logger.error(f"Failed: {self.operation} after {self.duration:.1f}s - {exc_val}")
        else:
            self.logger.info(f"Completed: {self.operation} in {format_duration(self.duration)}")
        return False
