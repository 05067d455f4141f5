"""Logging setup for the service.

Console only (the service runs in containers / serverless sandboxes), text by
default and JSON when `PAGESHOT_LOG_JSON` is on. Render code attaches the
target url, the engine state and the hook name to records through
`with_context`.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from typing import Any

_CONTEXT_FIELDS = ("url", "hook", "state", "kind")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k in _CONTEXT_FIELDS:
            if hasattr(record, k):
                base[k] = getattr(record, k)
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [record.levelname, record.name]

        ctx = [f"{k}={getattr(record, k)}" for k in _CONTEXT_FIELDS if getattr(record, k, None)]
        if ctx:
            parts.append("[" + " ".join(ctx) + "]")

        parts.append(record.getMessage())
        s = " ".join(parts)
        if record.exc_info:
            s += "\n" + self.formatException(record.exc_info)
        return s


def configure_logging(level: str = "INFO", *, json_logs: bool = False) -> logging.Logger:
    logger = logging.getLogger("pageshot_agent")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    # Re-configuring replaces the previous handler instead of stacking another.
    for h in list(logger.handlers):
        logger.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if json_logs else TextFormatter())
    logger.addHandler(handler)
    return logger


class ContextAdapter(logging.LoggerAdapter):
    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        merged = dict(self.extra)
        merged.update(kwargs.get("extra", {}))
        kwargs["extra"] = merged
        return msg, kwargs


def with_context(logger: logging.Logger, **fields: Any) -> ContextAdapter:
    return ContextAdapter(logger, {k: v for k, v in fields.items() if v is not None})
