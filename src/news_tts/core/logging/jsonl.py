"""
JSON Lines Output for the rotating log file.

    {"ts": "2026-03-02T09:14:05+03:00", "level": 2, "tag": "INFO", "logger": "news-tts.batch",
     "message": "batch_start", "correlation_id": "batch_1f2e", "extra": {"needed": 2, "saved": 1}}

``seconds``, ``event``, ``extra`` and ``exception`` appear only when set.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict


class JsonlFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        for key in ("event", "seconds"):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
