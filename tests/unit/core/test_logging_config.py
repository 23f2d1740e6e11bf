"""Unit tests for the key/value log formatter and level parsing."""

import logging

import pytest

from labops.core.logging_config import (
    KeyValueFormatter,
    configure_logging,
    escape_log_value,
    parse_log_level,
)
from labops.core.logging_utils import (
    FIELDS_ATTR,
    current_run_id,
    ensure_structured_logger,
    get_module_logger,
    set_run_id,
)


@pytest.fixture(autouse=True)
def reset_run_id():
    set_run_id(None)
    yield
    set_run_id(None)


class TestParseLogLevel:

    @pytest.mark.parametrize("text,level", [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("warn", logging.WARNING),
        ("error", logging.ERROR),
    ])
    def test_known_levels(self, text, level):
        assert parse_log_level(text) == level

    def test_unknown_level_message(self):
        with pytest.raises(ValueError) as exc_info:
            parse_log_level("loud")
        assert str(exc_info.value) == "invalid --log-level 'loud' (expected debug|info|warn|error)"


class TestEscapeLogValue:

    def test_escapes_quotes_and_whitespace(self):
        assert escape_log_value('a"b\\c\nd\te') == 'a\\"b\\\\c\\nd\\te'


class TestKeyValueFormatter:

    def _record(self, message, fields=None, level=logging.INFO):
        record = logging.LogRecord("labops.Test", level, __file__, 1, message, None, None)
        if fields is not None:
            setattr(record, FIELDS_ATTR, fields)
        return record

    def test_renders_run_id_message_and_fields(self):
        set_run_id("run-1-abcdef")
        line = KeyValueFormatter().format(self._record("backend connected", {"backend": "sim"}))
        assert "level=INFO" in line
        assert 'run_id="run-1-abcdef"' in line
        assert 'msg="backend connected"' in line
        assert line.endswith('backend="sim"')
        assert line.startswith("ts_utc=")

    def test_default_run_id_placeholder(self):
        line = KeyValueFormatter().format(self._record("x"))
        assert 'run_id="-"' in line

    def test_warning_rendered_as_warn(self):
        line = KeyValueFormatter().format(self._record("careful", level=logging.WARNING))
        assert "level=WARN" in line


class TestStructuredLogger:

    def test_namespace_and_component(self):
        log = get_module_logger("Orchestrator")
        assert log.name == "labops.Orchestrator"
        assert log.component == "Orchestrator"

    def test_wraps_plain_logger(self):
        wrapped = ensure_structured_logger(logging.getLogger("labops.plain"))
        assert wrapped.logger.name == "labops.plain"

    def test_fields_reach_handler(self):
        configure_logging("debug", force=True, console=False)
        captured = []

        class ListHandler(logging.Handler):
            def emit(self, record):
                captured.append(record)

        handler = ListHandler()
        target = logging.getLogger("labops")
        target.addHandler(handler)
        try:
            get_module_logger("Test").info("hello", count=3, ok=True, missing=None)
        finally:
            target.removeHandler(handler)
        assert captured
        assert getattr(captured[0], FIELDS_ATTR) == {"count": "3", "ok": "true", "missing": ""}

    def test_run_id_binding(self):
        set_run_id("run-9")
        assert current_run_id() == "run-9"
        set_run_id("")
        assert current_run_id() == "-"

    def test_log_file_handler(self, tmp_path):
        log_path = tmp_path / "logs" / "labops.log"
        configure_logging("info", force=True, console=False, log_file=log_path)
        get_module_logger("FileTest").info("written to file", key="v")
        for handler in logging.getLogger("labops").handlers:
            handler.flush()
        text = log_path.read_text(encoding="utf-8")
        assert 'msg="written to file"' in text
        assert 'key="v"' in text
        configure_logging("info", force=True, console=False)
