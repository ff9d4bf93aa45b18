"""Logging setup for the disk provisioning tool.

Progress narration goes to the console as plain messages: INFO and WARNING on
stdout, ERROR and above on stderr. Real runs also keep a rotating log file
under /var/log/disk_provision/ using the standard timestamped format.
"""

from __future__ import annotations

from logging import (
    Filter, Formatter, Logger, LogRecord, StreamHandler, getLogger, ERROR, INFO, WARNING
)
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional
import subprocess
import sys

BYTES_PER_MB = 1024 * 1024

# Default log configuration
DEFAULT_LOG_MAX_BYTES = 5 * BYTES_PER_MB  # 5 MB
DEFAULT_LOG_BACKUP_COUNT = 5
DEFAULT_LOG_LEVEL = INFO

# Format: timestamp - severity - logger - message
STANDARD_LOG_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"
STANDARD_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

FALLBACK_HANDLER_NAME = "stderr_fallback"


class _BelowLevelFilter(Filter):
    """Pass only records strictly below ``level``."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: LogRecord) -> bool:
        return record.levelno < self.level


def _ensure_fallback_handler(logger: Logger, level: int = INFO) -> None:
    """Add a stderr handler as fallback if no handlers are configured.

    Args:
        logger: Logger instance to add fallback handler to
        level: Log level for the handler
    """
    if logger.handlers:
        return

    handler = StreamHandler(sys.stderr)
    handler.set_name(FALLBACK_HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(get_standard_formatter())
    logger.addHandler(handler)


def get_standard_formatter() -> Formatter:
    """Get the standard formatter for log files.

    Returns:
        Configured Formatter instance
    """
    return Formatter(STANDARD_LOG_FORMAT, STANDARD_DATE_FORMAT)


def get_rotating_logger(
    name: str,
    log_file: str,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = DEFAULT_LOG_LEVEL
) -> Logger:
    """Return a logger configured with a rotating file handler.

    Args:
        name: Logger name
        log_file: Path to log file
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of backup files to keep
        level: Logging level

    Returns:
        Configured Logger instance with rotating file handler
    """
    logger = getLogger(name)
    if not logger.handlers:
        logger.setLevel(level)
        logger.propagate = False

    log_path = Path(log_file)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"Error creating log directory {log_path.parent}: {e}", file=sys.stderr)
        _ensure_fallback_handler(logger, level)
        return logger

    log_file_path = str(log_path.resolve())
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == log_file_path:
            return logger

    try:
        handler = RotatingFileHandler(log_file_path, maxBytes=max_bytes, backupCount=backup_count)
        handler.setLevel(level)
        handler.setFormatter(get_standard_formatter())
        logger.addHandler(handler)
    except OSError as e:
        print(f"Error opening log file {log_file_path}: {e}", file=sys.stderr)
        _ensure_fallback_handler(logger, level)
        return logger

    return logger


def _has_stdout_handler(logger: Logger) -> bool:
    for h in logger.handlers:
        if isinstance(h, StreamHandler) and getattr(h, "stream", None) is sys.stdout:
            return True
    return False


def get_service_logger(
    service_name: str,
    log_dir: Optional[str] = None,
    level: int = DEFAULT_LOG_LEVEL,
    console_output: bool = True
) -> Logger:
    """Get a logger for a provisioning run.

    Args:
        service_name: Logger name, also used for the log file name
        log_dir: Directory for ``<service_name>.log``; None disables the file log
        level: Logging level
        console_output: Whether to also print to the console

    Returns:
        Configured Logger instance

    Example:
        logger = get_service_logger('setup_data_disk', '/var/log/disk_provision')
        logger.info('Step 1: Resolving device name...')
    """
    if log_dir:
        logger = get_rotating_logger(service_name, str(Path(log_dir) / f"{service_name}.log"), level=level)
    else:
        logger = getLogger(service_name)
        logger.setLevel(level)
        logger.propagate = False

    if console_output and not _has_stdout_handler(logger):
        # The console handlers below replace the timestamped stderr fallback
        for h in list(logger.handlers):
            if h.get_name() == FALLBACK_HANDLER_NAME:
                logger.removeHandler(h)

        # Console output is the narration itself: message only
        stdout_handler = StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.addFilter(_BelowLevelFilter(ERROR))
        stdout_handler.setFormatter(Formatter('%(message)s'))
        logger.addHandler(stdout_handler)

        stderr_handler = StreamHandler(sys.stderr)
        stderr_handler.setLevel(max(level, ERROR))
        stderr_handler.setFormatter(Formatter('%(message)s'))
        logger.addHandler(stderr_handler)

    if not logger.handlers:
        _ensure_fallback_handler(logger, level)

    return logger


def log_subprocess_result(
    logger: Logger,
    action: str,
    result: subprocess.CompletedProcess[str],
    success_level: int = INFO,
    failure_level: int = WARNING
) -> bool:
    """Log concise command result details and return success state."""
    if result.returncode == 0:
        logger.log(success_level, f"✓ {action}")
        return True

    logger.log(failure_level, f"⚠ {action} failed: {summarize_stderr(result)}")
    return False


def summarize_stderr(result: subprocess.CompletedProcess[str]) -> str:
    """Return the first lines of a command's stderr, or its exit code."""
    stderr_raw = result.stderr or ""
    if isinstance(stderr_raw, bytes):
        stderr_raw = stderr_raw.decode(errors="replace")
    stderr = stderr_raw.strip().splitlines()
    if not stderr:
        return f"exit code {result.returncode}"
    details = " | ".join(stderr[:3])
    if len(stderr) > 3:
        details += " | ..."
    return details
