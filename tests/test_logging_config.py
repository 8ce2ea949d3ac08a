"""logging_config tests."""

import logging

import pytest

from logging_config import setup_logging


@pytest.fixture
def clean_root():
    root = logging.getLogger()
    before = list(root.handlers)
    yield root
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()


def test_idempotent_handlers(tmp_path, clean_root, monkeypatch):
    monkeypatch.delenv("TURN_TRACKER_LOG_LEVEL", raising=False)
    monkeypatch.delenv("TURN_TRACKER_LOG_FILE", raising=False)
    log_file = tmp_path / "logs" / "client.log"
    setup_logging(log_file=str(log_file), enable_console=True)
    setup_logging(log_file=str(log_file), enable_console=True)
    names = [h.name for h in clean_root.handlers]
    assert names.count("turn_tracker_file") == 1
    assert names.count("turn_tracker_console") == 1
    assert log_file.exists()


def test_env_level_and_quiet_libraries(tmp_path, clean_root, monkeypatch):
    monkeypatch.setenv("TURN_TRACKER_LOG_LEVEL", "error")
    monkeypatch.setenv("TURN_TRACKER_LOG_FILE", str(tmp_path / "env.log"))
    setup_logging(level="DEBUG")
    handler = next(h for h in clean_root.handlers if h.name == "turn_tracker_file")
    assert handler.level == logging.ERROR
    assert logging.getLogger("websockets").level == logging.WARNING
