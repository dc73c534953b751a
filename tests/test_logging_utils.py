import logging
from pathlib import Path

import pytest

from layersynth.logging_utils import (
    configure_logging,
    debug_enabled,
    get_log_dir,
    get_log_path,
    log_exception,
)


def test_log_path_uses_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAYERSYNTH_LOG_DIR", str(tmp_path))
    assert get_log_dir() == tmp_path
    assert get_log_path() == tmp_path / "layersynth.log"


def test_debug_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LAYERSYNTH_DEBUG", raising=False)
    assert debug_enabled() is False
    monkeypatch.setenv("LAYERSYNTH_DEBUG", "1")
    assert debug_enabled() is True


def test_log_exception_appends_traceback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAYERSYNTH_LOG_DIR", str(tmp_path / "nested"))
    try:
        raise ValueError("boom")
    except ValueError as exc:
        path = log_exception("render", exc)
    assert path == tmp_path / "nested" / "layersynth.log"
    text = path.read_text(encoding="utf-8")
    assert "render failed: ValueError: boom" in text
    assert "Traceback" in text


def test_configure_logging_applies_level(monkeypatch: pytest.MonkeyPatch) -> None:
    logger = logging.getLogger("layersynth")
    original = logger.level
    monkeypatch.setenv("LAYERSYNTH_LOG_LEVEL", "debug")
    try:
        configure_logging()
        assert logger.level == logging.DEBUG
        assert any(isinstance(handler, logging.NullHandler) for handler in logger.handlers)
        configure_logging()
        assert sum(isinstance(handler, logging.NullHandler) for handler in logger.handlers) == 1
    finally:
        logger.setLevel(original)


def test_configure_logging_warns_on_unknown_level(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    logger = logging.getLogger("layersynth")
    original = logger.level
    monkeypatch.setenv("LAYERSYNTH_LOG_LEVEL", "chatty")
    caplog.set_level(logging.WARNING, logger="layersynth.logging")
    try:
        configure_logging()
    finally:
        logger.setLevel(original)
    assert "LAYERSYNTH_LOG_LEVEL" in caplog.text
