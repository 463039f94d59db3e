"""Tests for the logging and asyncio helpers."""

import asyncio
import logging
import logging.handlers

import pytest

from camfeature.core import logging_config
from camfeature.core.asyncio_utils import create_logged_task
from camfeature.core.logging_utils import StructuredLogger, ensure_structured_logger, get_module_logger


class TestStructuredLogger:

    def test_module_logger_is_namespaced(self):
        log = get_module_logger("camera.controller")
        assert log.name == "camfeature.camera.controller"
        assert log.component == "camera.controller"

    def test_prefixes_component(self, caplog):
        log = get_module_logger("camera.session")
        with caplog.at_level(logging.INFO, logger="camfeature"):
            log.info("Opened %s", "0")
        assert caplog.records[-1].getMessage() == "[camera.session] Opened 0"

    def test_bad_format_args_do_not_raise(self, caplog):
        log = get_module_logger("camera.session")
        with caplog.at_level(logging.INFO, logger="camfeature"):
            log.info("value %d", "not-a-number")
        assert "args=not-a-number" in caplog.records[-1].getMessage()

    def test_ensure_wraps_plain_logger(self):
        plain = logging.getLogger("somewhere.else")
        wrapped = ensure_structured_logger(plain, component="custom")
        assert isinstance(wrapped, StructuredLogger)
        assert wrapped.logger is plain
        assert wrapped.component == "custom"

    def test_ensure_falls_back_to_module_logger(self):
        log = ensure_structured_logger(None, fallback_name="camera.storage")
        assert log.name == "camfeature.camera.storage"

    def test_child_extends_component(self):
        child = get_module_logger("camera").getChild("hardware")
        assert child.component == "camera.hardware"


class TestConfigureLogging:

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            logging_config.coerce_level("chatty")

    def test_level_names(self):
        assert logging_config.coerce_level("debug") == logging.DEBUG
        assert logging_config.coerce_level(logging.WARNING) == logging.WARNING

    def test_writes_rotating_file(self, tmp_path, monkeypatch):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        asyncio_logger = logging.getLogger("asyncio")
        monkeypatch.setattr(asyncio_logger, "level", asyncio_logger.level)
        monkeypatch.setattr(logging_config, "_configured", False)
        log_file = tmp_path / "logs" / "camfeature.log"
        try:
            logging_config.configure_logging("debug", console=False, log_file=log_file)
            get_module_logger("cli").info("hello file")
            for handler in root.handlers:
                handler.flush()
            text = log_file.read_text(encoding="utf-8")
            assert "[cli] hello file" in text
            assert "[MainThread]" in text
            assert asyncio_logger.level == logging.WARNING

            logging_config.configure_logging("error")
            assert root.level == logging.ERROR
            assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)


class TestCreateLoggedTask:

    @pytest.mark.asyncio
    async def test_logs_exception(self, caplog):
        async def boom():
            raise RuntimeError("kaboom")

        pending = set()
        with caplog.at_level(logging.ERROR, logger="camfeature"):
            task = create_logged_task(boom(), context="boom-task", pending=pending)
            assert task in pending
            await asyncio.wait({task})
            await asyncio.sleep(0)
        assert not pending
        assert any("boom-task" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def value():
            return 42

        task = create_logged_task(value(), context="value-task")
        assert await task == 42
        assert task.get_name() == "value-task"
