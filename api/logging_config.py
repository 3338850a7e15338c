# =============================================================================
# logging_config.py — Structured logging setup
#
# Every module logs through `logging.getLogger(__name__)`. This file installs a
# single JSON-lines handler on the root logger, once, at application start.
# =============================================================================

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import settings


class JsonFormatter(logging.Formatter):
    """Emit log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "event"):
            payload["event"] = getattr(record, "event")
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure app-wide logging once. Later calls are no-ops."""
    root = logging.getLogger()
    if root.handlers:
        return

    level_name = (level or settings.log_level).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
