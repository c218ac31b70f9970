"""Tests for the logger factory."""

import logging
from datetime import date

import pytest

from scripts.lib.logger import log_file_path, setup_logger


@pytest.fixture
def fresh_name(request):
    name = f"tests.logger.{request.node.name}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class TestSetupLogger:
    def test_writes_daily_file(self, tmp_path, fresh_name):
        logger = setup_logger(fresh_name, log_to_file=True, log_dir=tmp_path)
        logger.warning("upload rejected")
        for handler in logger.handlers:
            handler.flush()

        path = log_file_path(tmp_path)
        assert path.exists()
        assert "upload rejected" in path.read_text(encoding="utf-8")

    def test_handlers_attached_once(self, tmp_path, fresh_name):
        first = setup_logger(fresh_name, log_to_file=True, log_dir=tmp_path)
        second = setup_logger(fresh_name, log_to_file=True, log_dir=tmp_path)
        assert first is second
        assert len(first.handlers) == 2

    def test_env_disables_file(self, tmp_path, fresh_name, monkeypatch):
        monkeypatch.setenv("DEALS_LOG_TO_FILE", "false")
        logger = setup_logger(fresh_name, log_dir=tmp_path)
        assert len(logger.handlers) == 1
        assert list(tmp_path.iterdir()) == []

    def test_level_from_env(self, fresh_name, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        logger = setup_logger(fresh_name, log_to_file=False)
        assert logger.level == logging.DEBUG


def test_log_file_name():
    assert log_file_path(day=date(2025, 6, 2)).name == "20250602_deals_dashboard.log"
