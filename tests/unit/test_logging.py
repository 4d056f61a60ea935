"""Unit tests for logging configuration."""

import logging
import os
import re
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from taskbridge.utils.logging import TaskbridgeFormatter, get_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before and after each test."""
    root = logging.getLogger()
    original_level = root.level
    original_handlers = root.handlers.copy()

    yield

    root.setLevel(original_level)
    for handler in root.handlers:
        if handler not in original_handlers:
            handler.close()
    root.handlers.clear()
    for handler in original_handlers:
        root.addHandler(handler)


def _record(name="taskbridge.graph.resolver", level=logging.INFO, msg="Removed edge", args=()):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestTaskbridgeFormatter:
    """Tests for TaskbridgeFormatter."""

    def test_plain_output_structure(self):
        """Test formatter output without colors."""
        formatter = TaskbridgeFormatter(use_colors=False)
        record = _record()
        record.created = datetime(2024, 1, 2, 3, 4, 5).timestamp()

        output = formatter.format(record)

        assert output == "[03:04:05] INFO     resolver     Removed edge"

    def test_no_ansi_codes_when_disabled(self):
        """Test no ANSI codes even on a terminal when colors are disabled."""
        formatter = TaskbridgeFormatter(use_colors=False)

        with patch("sys.stderr.isatty", return_value=True):
            output = formatter.format(_record(level=logging.ERROR))

        assert not re.search(r"\033\[[0-9;]*m", output)

    def test_colors_on_terminal(self):
        """Test level is colorized when stderr is a terminal."""
        formatter = TaskbridgeFormatter(use_colors=True)

        with patch("sys.stderr.isatty", return_value=True):
            output = formatter.format(_record(level=logging.WARNING))

        assert TaskbridgeFormatter.COLORS["WARNING"] in output
        assert TaskbridgeFormatter.COLORS["RESET"] in output

    def test_no_colors_when_not_terminal(self):
        """Test colors are skipped when stderr is redirected."""
        formatter = TaskbridgeFormatter(use_colors=True)

        with patch("sys.stderr.isatty", return_value=False):
            output = formatter.format(_record())

        assert "\033[" not in output

    def test_message_args_rendered(self):
        """Test message arguments are interpolated."""
        formatter = TaskbridgeFormatter(use_colors=False)

        output = formatter.format(_record(msg="Inserted %d tasks", args=(3,)))

        assert "Inserted 3 tasks" in output

    def test_task_context_tag(self):
        """Test records carrying a task id get a short task tag."""
        formatter = TaskbridgeFormatter(use_colors=False)
        record = _record()
        record.task_id = "0123456789abcdef"

        output = formatter.format(record)

        assert output.endswith("[task 01234567] Removed edge")

    def test_empty_task_context_ignored(self):
        formatter = TaskbridgeFormatter(use_colors=False)
        record = _record()
        record.task_id = None

        assert "[task" not in formatter.format(record)

    def test_exception_text_appended(self):
        """Test exception info is included after the message."""
        formatter = TaskbridgeFormatter(use_colors=False)
        try:
            raise RuntimeError("store unavailable")
        except RuntimeError:
            record = logging.LogRecord(
                name="taskbridge.store",
                level=logging.ERROR,
                pathname="test.py",
                lineno=1,
                msg="Commit failed",
                args=(),
                exc_info=sys.exc_info(),
            )

        output = formatter.format(record)

        assert "Commit failed" in output
        assert "RuntimeError: store unavailable" in output


class TestSetupLogging:
    """Tests for setup_logging function."""

    def _ours(self):
        return [
            h for h in logging.getLogger().handlers if isinstance(h.formatter, TaskbridgeFormatter)
        ]

    def test_console_handler_created(self):
        """Test console handler is created by default."""
        setup_logging()

        handlers = self._ours()
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)

    def test_console_disabled(self):
        """Test console=False installs no stream handler."""
        setup_logging(console=False)

        assert self._ours() == []

    @pytest.mark.parametrize(
        "level,expected",
        [("DEBUG", logging.DEBUG), ("info", logging.INFO), ("WaRnInG", logging.WARNING)],
    )
    def test_log_level_case_insensitive(self, level, expected):
        """Test log level names are case-insensitive."""
        setup_logging(level=level)

        assert logging.getLogger().level == expected

    def test_existing_handlers_cleared(self):
        """Test existing handlers are removed before setup."""
        existing = logging.StreamHandler()
        logging.getLogger().addHandler(existing)

        setup_logging()

        assert existing not in logging.getLogger().handlers

    def test_file_handler_without_colors(self, tmp_path):
        """Test log_file adds an uncolored rotating file handler."""
        log_file = tmp_path / "nested" / "taskbridge.log"

        setup_logging(log_file=log_file, use_colors=True)

        file_handlers = [
            h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename == str(log_file)
        assert file_handlers[0].formatter.use_colors is False
        assert log_file.parent.is_dir()

    def test_log_dir_generates_file_name(self, tmp_path):
        """Test log_dir creates a timestamped log file."""
        setup_logging(log_dir=tmp_path, console=False)

        file_handlers = [
            h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert re.search(r"taskbridge_\d{8}_\d{6}\.log$", file_handlers[0].baseFilename)

    def test_rotation_size(self, tmp_path):
        """Test rotation_mb sets the handler size limit."""
        setup_logging(log_file=tmp_path / "t.log", rotation_mb=2, console=False)

        handler = next(
            h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)
        )
        assert handler.maxBytes == 2 * 1024 * 1024

    def test_old_logs_pruned(self, tmp_path):
        """Test log files older than retention_days are deleted."""
        stale = tmp_path / "taskbridge_old.log"
        stale.write_text("old")
        old = time.time() - 10 * 86400
        os.utime(stale, (old, old))
        fresh = tmp_path / "taskbridge_recent.log"
        fresh.write_text("new")

        setup_logging(log_dir=tmp_path, retention_days=7, console=False)

        assert not stale.exists()
        assert fresh.exists()

    def test_asyncio_logger_quieted(self):
        """Test the asyncio logger is raised to WARNING."""
        setup_logging(level="DEBUG")

        assert logging.getLogger("asyncio").level == logging.WARNING

    def test_logger_outputs_to_stderr(self, capsys):
        """Test log records go to stderr, filtered by level."""
        setup_logging(level="WARNING", use_colors=False)
        logger = get_logger("taskbridge.test")

        logger.info("hidden message")
        logger.warning("visible message")

        captured = capsys.readouterr()
        assert "visible message" in captured.err
        assert "hidden message" not in captured.err
        assert captured.out == ""


def test_get_logger_returns_named_logger():
    """Test get_logger returns the standard named logger."""
    logger = get_logger("taskbridge.gaps.detector")

    assert logger is logging.getLogger("taskbridge.gaps.detector")
