from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def _utc_iso(ts: float | None = None) -> str:
    dt = datetime.fromtimestamp(ts or time.time(), tz=timezone.utc)
    return dt.isoformat()


@dataclass
class JsonLogConfig:
    service_name: str = "wattch-sync"


class JsonFormatter(logging.Formatter):
    """One-line JSON log records.

    Structured call-site data passed as ``extra={"fields": {...}}`` is kept
    under "fields" so log processors can index it.
    """

    def __init__(self, config: JsonLogConfig) -> None:
        super().__init__()
        self.config = config

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _utc_iso(record.created),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.config.service_name,
        }

        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload["fields"] = fields

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def configure_logging(*, level: int, log_format: str, debug: bool = False) -> None:
    """Configure process logging.

    - log_format="json": structured JSON, one record per line
    - log_format="text": standard human-readable

    With ``debug`` the ``wattch`` logger tree is lowered to DEBUG so per-sync
    success lines show up without turning on debug output for third-party
    libraries (urllib3, firebase_admin).
    """

    root = logging.getLogger()
    root.setLevel(level)

    # Replace handlers to avoid duplicate logs when called multiple times.
    root.handlers.clear()

    handler = logging.StreamHandler()
    if log_format.strip().lower() == "json":
        handler.setFormatter(JsonFormatter(JsonLogConfig()))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))

    root.addHandler(handler)

    app_logger = logging.getLogger("wattch")
    app_logger.setLevel(logging.DEBUG if debug else logging.NOTSET)
