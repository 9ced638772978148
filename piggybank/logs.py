from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from piggybank.config import get_settings

OPTIONAL_FIELDS = (
    "operation",
    "goal_id",
    "request_id",
    "sender",
    "digest",
    "step_count",
    "step_index",
    "function",
    "view_count",
    "asset_type",
    "attempt",
    "route",
    "status_code",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        settings = get_settings()
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "piggybank-ledger",
            "environment": settings.app_env,
        }

        for field in OPTIONAL_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, default=str)


def setup_json_logging(level: str | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel((level or get_settings().log_level).upper())
