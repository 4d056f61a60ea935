"""Logging configuration for the bridging engine and CLI."""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Third-party or stdlib loggers that are too chatty at DEBUG
QUIET_LOGGERS = ("asyncio",)


class TaskbridgeFormatter(logging.Formatter):
    """Formatter with level colors, short logger names and task context.

    Records logged with ``extra={"task_id": ...}`` get a ``[task abcd1234]``
    tag in front of the message.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def _level(self, levelname: str) -> str:
        if not (self.use_colors and sys.stderr.isatty()):
            return levelname
        return f"{self.COLORS.get(levelname, '')}{levelname}{self.COLORS['RESET']}"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        # taskbridge.graph.resolver -> resolver
        name = record.name.rsplit(".", 1)[-1]

        message = record.getMessage()
        task_id = getattr(record, "task_id", None)
        if task_id:
            message = f"[task {task_id[:8]}] {message}"

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            message = f"{message}\n{record.exc_text}"

        return f"[{timestamp}] {self._level(record.levelname):8} {name:12} {message}"


def _prune_old_logs(log_dir: Path, retention_days: int) -> None:
    """Delete log files last modified more than retention_days ago."""
    if retention_days <= 0:
        return
    cutoff = datetime.now().timestamp() - retention_days * 86400
    for path in log_dir.glob("*.log*"):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
        except FileNotFoundError:
            continue


def _file_handler(
    log_file: Optional[Path],
    log_dir: Optional[Path],
    rotation_mb: int,
    retention_days: int,
) -> RotatingFileHandler:
    if log_file is None:
        log_file = Path(log_dir) / f"taskbridge_{datetime.now():%Y%m%d_%H%M%S}.log"
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    _prune_old_logs(log_file.parent, retention_days)

    handler = RotatingFileHandler(
        log_file,
        maxBytes=max(1, rotation_mb) * 1024 * 1024,
        backupCount=max(1, retention_days),
    )
    # Files never get ANSI codes
    handler.setFormatter(TaskbridgeFormatter(use_colors=False))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    log_dir: Optional[Path] = None,
    rotation_mb: int = 10,
    retention_days: int = 7,
    use_colors: bool = True,
    console: bool = True,
) -> None:
    """Configure the root logger, replacing any existing handlers.

    Args:
        level: Log level name, case-insensitive
        log_file: Log file path (takes precedence over log_dir)
        log_dir: Directory for a timestamped ``taskbridge_*.log`` file
        rotation_mb: Max log size before rotation (MB)
        retention_days: Days to keep old log files (<=0 keeps everything)
        use_colors: Colorize console levels when stderr is a terminal
        console: Log to stderr
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers.clear()

    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(TaskbridgeFormatter(use_colors=use_colors))
        root.addHandler(stream)

    if log_file or log_dir:
        root.addHandler(_file_handler(log_file, log_dir, rotation_mb, retention_days))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; equivalent to ``logging.getLogger(name)``."""
    return logging.getLogger(name)
