from __future__ import annotations

import json
import logging
import sys
from typing import Any

from revenue_ingest.config import PipelineConfig, load_config


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def init_logging(config: PipelineConfig | None = None) -> None:
    if logging.getLogger().handlers:
        return
    config = config or load_config()
    level = getattr(logging, config.log_level, logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    if config.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)
