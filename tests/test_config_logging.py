"""Tests for configuration loading and logging setup."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import core.config as config
from core.logging_config import SecretRedactionFilter, configure_logging, register_secret


@pytest.fixture
def restore_root_logger():
    """Undo configure_logging side effects on the root logger."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


def test_data_dir_override(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("NOTA_HOME", str(tmp_path / "home"))

    assert config.get_data_dir() == tmp_path / "home"
    assert config.get_database_path() == tmp_path / "home" / "database.db"
    assert config.get_log_dir() == tmp_path / "home" / "logs"


def test_data_dir_default(monkeypatch) -> None:
    monkeypatch.delenv("NOTA_HOME", raising=False)
    assert config.get_data_dir() == Path.home() / ".nota"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, 30.0),
        ("12.5", 12.5),
        ("soon", 30.0),
        ("0", 30.0),
        ("-3", 30.0),
    ],
)
def test_request_timeout_from_env(monkeypatch, raw, expected) -> None:
    if raw is None:
        monkeypatch.delenv("NOTA_REQUEST_TIMEOUT", raising=False)
    else:
        monkeypatch.setenv("NOTA_REQUEST_TIMEOUT", raw)
    assert config.get_request_timeout() == expected


def test_poll_interval_from_env(monkeypatch) -> None:
    monkeypatch.setenv("NOTA_LOAD_POLL_INTERVAL", "0.5")
    assert config.get_poll_interval() == 0.5


def test_get_api_key_priority(monkeypatch) -> None:
    service = MagicMock()
    service.get_credential.return_value = None
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")

    with patch("core.config._get_keyring", return_value=service):
        assert config.get_api_key("gemini") == "env-key"

        service.get_credential.return_value = "keyring-key"
        assert config.get_api_key("gemini") == "keyring-key"

        monkeypatch.delenv("GEMINI_API_KEY")
        service.get_credential.return_value = None
        assert config.get_api_key("gemini") is None


def test_store_api_key_delegates(monkeypatch) -> None:
    service = MagicMock()
    service.store_credential.return_value = True

    with patch("core.config._get_keyring", return_value=service):
        assert config.store_api_key("gemini", "secret") is True
    service.store_credential.assert_called_once_with("gemini", "secret")


def test_clear_config_cache() -> None:
    sentinel = MagicMock()
    with patch.object(config, "_keyring_service", sentinel):
        assert config._get_keyring() is sentinel
        config.clear_config_cache()
        assert config._keyring_service is None


def test_configure_logging_writes_file(tmp_path: Path, restore_root_logger) -> None:
    log_file = configure_logging(log_dir=tmp_path, file_level="debug", console_level="error")

    logging.getLogger("nota.test").info("settings saved")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_file == tmp_path / "nota.log"
    assert "settings saved" in log_file.read_text(encoding="utf-8")


def test_configure_logging_levels_from_env(tmp_path: Path, monkeypatch, restore_root_logger) -> None:
    monkeypatch.setenv("NOTA_LOG_FILE_LEVEL", "WARNING")
    monkeypatch.setenv("NOTA_LOG_CONSOLE_LEVEL", "bogus")

    configure_logging(log_dir=tmp_path)

    levels = sorted(handler.level for handler in logging.getLogger().handlers)
    assert levels == [logging.WARNING, logging.WARNING]


def test_redaction_filter_masks_registered_secrets() -> None:
    redactor = SecretRedactionFilter()
    redactor.register("sk-live-123456")
    redactor.register("abc")

    record = logging.LogRecord(
        "test", logging.INFO, __file__, 1, "key=%s other=%s", ("sk-live-123456", "abc"), None
    )
    assert redactor.filter(record) is True
    assert record.getMessage() == "key=*** other=abc"


def test_registered_secret_never_reaches_log_file(tmp_path: Path, restore_root_logger) -> None:
    log_file = configure_logging(log_dir=tmp_path, file_level="INFO", console_level="CRITICAL")
    register_secret("AIzaSy-test-secret")

    logging.getLogger("nota.test").warning("Request failed for key AIzaSy-test-secret")
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = log_file.read_text(encoding="utf-8")
    assert "AIzaSy-test-secret" not in content
    assert "Request failed for key ***" in content
