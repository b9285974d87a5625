from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from .settings import LogSettings

SERVICE_NAME = "vant-recorder"
LOGGER_NAME = "vant_recorder"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def _utc_iso(ts: float | None = None) -> str:
    dt = datetime.fromtimestamp(ts or time.time(), tz=timezone.utc)
    return dt.isoformat()


@dataclass
class JsonLogConfig:
    service_name: str = SERVICE_NAME
    include_exc_info: bool = False


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, severity, logger, message, service.

    Structured extras passed as `extra={"fields": {...}}` are kept under "fields".
    """

    def __init__(self, config: JsonLogConfig) -> None:
        super().__init__()
        self.config = config

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _utc_iso(record.created),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.config.service_name,
        }

        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload["fields"] = fields

        if record.exc_info and self.config.include_exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter; tracebacks only when error information is enabled."""

    def __init__(self, *, include_exc_info: bool) -> None:
        super().__init__(_TEXT_FORMAT)
        self.include_exc_info = include_exc_info

    def formatException(self, ei) -> str:  # noqa: N802 - logging API
        if not self.include_exc_info:
            return ""
        return super().formatException(ei)

    def format(self, record: logging.LogRecord) -> str:
        if self.include_exc_info:
            return super().format(record)
        # Cached exc_text from another handler would otherwise leak the traceback.
        saved = record.exc_text
        record.exc_text = None
        try:
            return super().format(record)
        finally:
            record.exc_text = saved


def log_level(name: str) -> int:
    return _LEVELS.get(name.strip().lower(), logging.INFO)


def configure_logging(options: LogSettings, *, service_name: str = SERVICE_NAME) -> logging.Logger:
    """Configure the recorder logger from LogSettings.

    - console_log: stream handler on stderr
    - file_log: daily rotating file `<log_dir>/<service_name>.log`
    - log_format="json": structured JSON lines, otherwise plain text

    Calling it again replaces the handlers installed by the previous call.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level(options.log_level))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if options.log_format.strip().lower() == "json":
        formatter: logging.Formatter = JsonFormatter(
            JsonLogConfig(service_name=service_name, include_exc_info=options.log_error_information)
        )
    else:
        formatter = TextFormatter(include_exc_info=options.log_error_information)

    if options.console_log:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    if options.file_log:
        log_dir = Path(options.log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_dir / f"{service_name}.log",
            when="midnight",
            backupCount=14,
            encoding="utf-8",
            utc=True,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
