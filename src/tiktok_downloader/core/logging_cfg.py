"""JSON logging for the TikTok Downloader service.

Resolver attempts, endpoint failures, relay start/completion and post-commit
stream errors are emitted by the service modules through their module
loggers; this module renders them, together with uvicorn's own records, as
one JSON object per line on stdout. httpx/httpcore request chatter is held
back unless debug is on, since every resolver attempt is already logged.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "message": record.getMessage(),
            "name": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(debug: bool) -> None:
    """Initialize root logging with JSON formatting.

    Parameters
    ----------
    debug: bool
        Whether to set the root logger to DEBUG level.

    Notes
    -----
    - Replaces any handlers installed earlier (uvicorn reload, test runners).
    - ``_NOISY_LOGGERS`` stay at WARNING unless ``debug`` is set.
    """

    level: int = logging.DEBUG if debug else logging.INFO
    handler: logging.Handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger: logging.Logger = logging.getLogger()
    root_logger.setLevel(level)
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if not debug else level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)
