import io
import logging

import pytest

from foldervision.services import logger as logger_module
from foldervision.services.logger import (
    ROOT_LOGGER_NAME,
    cleanup_handlers,
    configure,
    get_current_log_file,
    get_logger,
    lane_context,
)


@pytest.fixture
def captured():
    configure(level=logging.DEBUG)
    stream = io.StringIO()
    base = logging.getLogger(ROOT_LOGGER_NAME)
    console = base.handlers[0]
    original = console.setStream(stream)
    yield stream
    console.setStream(original)
    cleanup_handlers()


def test_child_loggers_share_root():
    log = get_logger("foldervision.core.scan_engine")
    assert log.name == f"{ROOT_LOGGER_NAME}.core.scan_engine"
    assert get_logger().name == ROOT_LOGGER_NAME


def test_lane_id_is_tagged(captured):
    log = get_logger("foldervision.core.thread_manager")
    log.info("outside")
    with lane_context(3):
        log.info("inside")
    lines = captured.getvalue().splitlines()
    assert "[lane:" not in lines[0]
    assert f"{ROOT_LOGGER_NAME}.core.thread_manager [lane:3]: inside" in lines[1]


def test_configure_replaces_handlers():
    configure(level=logging.WARNING)
    configure(level=logging.WARNING)
    base = logging.getLogger(ROOT_LOGGER_NAME)
    assert len(base.handlers) == 1
    assert base.level == logging.WARNING
    assert get_current_log_file() is None
    cleanup_handlers()


def test_file_logging(tmp_path, monkeypatch):
    monkeypatch.setattr(logger_module, "_safe_logs_dir", lambda: tmp_path)
    configure(level=logging.INFO, log_to_file=True)
    try:
        get_logger("foldervision.cli").warning("to file")
        logger_module.flush_all_handlers()
        log_file = get_current_log_file()
        assert log_file == tmp_path / "foldervision.log"
        assert "to file" in log_file.read_text(encoding="utf-8")
    finally:
        cleanup_handlers()


def test_console_level_leaves_file_level_alone(tmp_path, monkeypatch):
    monkeypatch.setattr(logger_module, "_safe_logs_dir", lambda: tmp_path)
    configure(level=logging.WARNING, log_to_file=True, console_level=logging.CRITICAL + 1)
    base = logging.getLogger(ROOT_LOGGER_NAME)
    console = base.handlers[0]
    stream = io.StringIO()
    original = console.setStream(stream)
    try:
        get_logger("foldervision.core.errors").error("Directory not found: /x")
        logger_module.flush_all_handlers()
        assert stream.getvalue() == ""
        assert "Directory not found: /x" in get_current_log_file().read_text(encoding="utf-8")
    finally:
        console.setStream(original)
        cleanup_handlers()
