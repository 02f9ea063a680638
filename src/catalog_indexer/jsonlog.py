"""Newline-delimited JSON log formatter for run logs.

Each record becomes one line ``{"timestamp", "level", "message", "data"?}``.
Structured context is attached with ``logger.info(msg, extra={"data": {...}})``.
"""

import json
import logging
from datetime import datetime, timezone


class JsonLinesFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data is not None:
            entry["data"] = data
        if record.exc_info:
            entry.setdefault("data", {})
            if isinstance(entry["data"], dict):
                entry["data"] = {**entry["data"], "exception": self.formatException(record.exc_info)}
        return json.dumps(entry, ensure_ascii=False, default=str)
