import json
import logging
from datetime import datetime, timezone
from logging import Logger
from typing import Any, Dict

MAX_FIELD_CHARS = 2_000


def log_json(logger: Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    if not logger.isEnabledFor(level):
        return
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    for key, value in fields.items():
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8", errors="replace")
        if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            value = value[:MAX_FIELD_CHARS] + "...(truncated)"
        payload[key] = value
    logger.log(level, json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str))
