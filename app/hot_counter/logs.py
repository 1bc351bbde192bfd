import os
import sys
import json
import logging
import threading
from typing import Callable, Optional, TextIO

SERVICE_NAME = "hot-counter"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, time in Unix seconds, no source location."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": int(record.created),
            "level": record.levelname,
            "msg": record.getMessage(),
            "app": SERVICE_NAME,
        }
        payload.update(getattr(record, "fields", {}))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def make_logger(stream: Optional[TextIO] = None, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(SERVICE_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    logger.propagate = False
    return logger


def log_json(level_func: Callable[..., None], event: str, exc_info=None, **fields) -> None:
    fields = {
        **fields,
        "pid": os.getpid(),
        "tid": threading.get_ident(),
    }
    level_func(event, exc_info=exc_info, extra={"fields": fields})
