"""Tests for logging setup."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from claimboard import logging as cb_logging
from claimboard.config import LoggingConfig
from claimboard.logging import TRACE, VERBOSE, get_logger, resolve_level, setup_logging


@pytest.fixture
def fresh_logger(monkeypatch: pytest.MonkeyPatch) -> Iterator[logging.Logger]:
    """Allow setup_logging to run again and undo its handlers afterwards."""
    logger = cb_logging.logger
    monkeypatch.setattr(cb_logging, "_initialized", False)
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)


class TestResolveLevel:
    """Tests for mapping config to a log level."""

    def test_default_is_info(self) -> None:
        assert resolve_level(None) == logging.INFO
        assert resolve_level(LoggingConfig()) == logging.INFO

    @pytest.mark.parametrize(
        ("verbose", "expected"),
        [(0, logging.ERROR), (1, logging.WARNING), (2, logging.INFO), (3, VERBOSE), (4, TRACE)],
    )
    def test_verbosity(self, verbose: int, expected: int) -> None:
        assert resolve_level(LoggingConfig(verbose=verbose)) == expected

    def test_verbose_beats_level(self) -> None:
        assert resolve_level(LoggingConfig(level="ERROR", verbose=4)) == TRACE

    def test_level_names(self) -> None:
        assert resolve_level(LoggingConfig(level="debug")) == logging.DEBUG
        assert resolve_level(LoggingConfig(level="warn")) == logging.WARNING
        assert resolve_level(LoggingConfig(level="bogus")) == logging.INFO


class TestSetupLogging:
    """Tests for handler installation."""

    def test_file_handler(self, tmp_path: Path, fresh_logger: logging.Logger) -> None:
        log_file = tmp_path / "claimboard.log"
        setup_logging(LoggingConfig(verbose=2, file=str(log_file)))

        get_logger("tasks").info("Task %s claimed", "7")
        for handler in fresh_logger.handlers:
            handler.flush()

        text = log_file.read_text()
        assert "claimboard.tasks info: Task 7 claimed" in text

    def test_env_log_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fresh_logger: logging.Logger
    ) -> None:
        log_file = tmp_path / "env.log"
        monkeypatch.setenv("CLAIMBOARD_LOG", str(log_file))
        setup_logging()
        assert any(isinstance(h, logging.FileHandler) for h in fresh_logger.handlers)

    def test_second_call_is_noop(self, tmp_path: Path, fresh_logger: logging.Logger) -> None:
        setup_logging(LoggingConfig(file=str(tmp_path / "a.log")))
        count = len(fresh_logger.handlers)
        setup_logging(LoggingConfig(file=str(tmp_path / "b.log")))
        assert len(fresh_logger.handlers) == count
        assert not (tmp_path / "b.log").exists()

    def test_get_logger_children(self) -> None:
        assert get_logger().name == "claimboard"
        assert get_logger("sessions").name == "claimboard.sessions"
