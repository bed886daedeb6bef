from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import IO, Optional

# Attributes present on every LogRecord; anything else came in through `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 169, "lvl": "INFO", "name": "tilesets.registry", "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        extra = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, stream: Optional[IO[str]] = None) -> None:
    """
    Configure the root logger once with JSON formatting.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (DEBUG/INFO/WARNING/ERROR)
      - default INFO
    """
    root = logging.getLogger()
    if getattr(root, "_tileserver_configured", False):
        return

    lvl_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = logging.getLevelName(lvl_name)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    root._tileserver_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Module logger; configuration is left to the entrypoint."""
    return logging.getLogger(name)
