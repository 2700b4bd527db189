"""
Structured logging setup: JSON lines (default) or plain text.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Optional

from .config import LoggingSettings

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        # logger.info(..., extra={"extra_data": {...}})
        if hasattr(record, "extra_data"):
            log_obj.update(record.extra_data)

        return json.dumps(log_obj, ensure_ascii=False, default=str)


def configure_logging(settings: LoggingSettings, logger_name: str = "clinicstream") -> logging.Logger:
    """
    Install one stdout handler on the application logger.

    Calling it again replaces the handler, so tests and reloads don't stack
    duplicate output.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(settings.level)

    for handler in list(logger.handlers):
        if getattr(handler, "_clinicstream_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.format == "json" else logging.Formatter(_TEXT_FORMAT))
    handler._clinicstream_handler = True
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under the application namespace."""
    return logging.getLogger(f"clinicstream.{name}" if name else "clinicstream")
