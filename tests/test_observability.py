from __future__ import annotations

import json
import logging

from wattch_sync.observability import JsonFormatter, JsonLogConfig, configure_logging


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="wattch.sync",
        level=logging.ERROR,
        pathname=__file__,
        lineno=1,
        msg="Sync failed for %s",
        args=("ESP1",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_emits_core_keys() -> None:
    payload = json.loads(JsonFormatter(JsonLogConfig()).format(_record()))

    assert payload["severity"] == "ERROR"
    assert payload["logger"] == "wattch.sync"
    assert payload["message"] == "Sync failed for ESP1"
    assert payload["service"] == "wattch-sync"
    assert "timestamp" in payload
    assert "fields" not in payload


def test_json_formatter_keeps_structured_fields() -> None:
    payload = json.loads(JsonFormatter(JsonLogConfig()).format(_record(fields={"device_id": "ESP1"})))
    assert payload["fields"] == {"device_id": "ESP1"}


def test_configure_logging_replaces_handlers_and_sets_debug_tree() -> None:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    app_logger = logging.getLogger("wattch")
    saved_app_level = app_logger.level
    try:
        configure_logging(level=logging.INFO, log_format="json", debug=True)
        configure_logging(level=logging.INFO, log_format="json", debug=True)

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert app_logger.level == logging.DEBUG

        configure_logging(level=logging.WARNING, log_format="text", debug=False)
        assert root.level == logging.WARNING
        assert app_logger.level == logging.NOTSET
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        app_logger.setLevel(saved_app_level)
