"""Logging configuration for the Messenger Sync service.

Modules log through ``logging.getLogger(__name__)``; this module only decides
how records are rendered (JSON lines or a plain console format).
"""
import json
import logging
import sys
import traceback
from datetime import UTC, datetime

from app.core.config import LogFormatEnum, settings

_EXTRA_FIELDS = ("user_id", "company_id", "chat_id", "message_id", "request_id", "action")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


def setup_logging(level: str | None = None, log_format: LogFormatEnum | str | None = None) -> None:
    """Configure the root logger.

    Args:
        level: Log level name; defaults to ``settings.log_level``.
        log_format: ``json`` or ``simple``; defaults to ``settings.log_format``.
    """
    level_name = (level or settings.log_level.value).upper()
    fmt = LogFormatEnum(log_format or settings.log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name))
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level_name))
    if fmt == LogFormatEnum.json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root_logger.addHandler(console_handler)

    # Keep third-party chatter out of the service logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
