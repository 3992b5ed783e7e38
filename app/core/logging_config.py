"""
Centralized logging configuration with request_id context support using loguru.

Standard library loggers (logging.getLogger(__name__)) used across the
datasource and trace modules are intercepted and re-emitted through loguru
as single-line JSON records.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from types import FrameType
from typing import Optional

from loguru import logger

from app.core.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class InterceptHandler(logging.Handler):
    """Redirect standard logging records to loguru."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where the logging call originated
        frame: Optional[FrameType] = sys._getframe(settings.LOGGING_FRAME_DEPTH)
        depth: int = settings.LOGGING_FRAME_DEPTH

        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def context_filter(record):
    """Attach the current request_id (if any) to the loguru record."""
    request_id = request_id_var.get()
    if request_id and request_id != "-":
        record["extra"]["request_id"] = request_id
    return record


def build_json_record(record) -> dict:
    """
    Build the JSON log record written to stderr.

    Fields: timestamp, level, logger, message, request_id (if present),
    exception (or null), process and thread info.
    """
    log_record = {
        "timestamp": record["time"].strftime("%Y-%m-%d %H:%M:%S"),
        "level": record["level"].name,
        "logger": record["name"],
        "message": record["message"],
    }

    if "request_id" in record["extra"]:
        log_record["request_id"] = record["extra"]["request_id"]

    exception = record["exception"]
    if exception:
        traceback_text = None
        if exception.traceback:
            traceback_text = "".join(
                traceback.format_exception(
                    exception.type, exception.value, exception.traceback
                )
            ).strip()
        log_record["exception"] = {
            "type": exception.type.__name__ if exception.type else None,
            "value": str(exception.value) if exception.value else None,
            "traceback": traceback_text,
        }
    else:
        log_record["exception"] = None

    log_record["process"] = {
        "id": record["process"].id,
        "name": record["process"].name,
    }
    log_record["thread"] = {
        "id": record["thread"].id,
        "name": record["thread"].name,
    }
    return log_record


def json_sink(message):
    sys.stderr.write(json.dumps(build_json_record(message.record), default=str) + "\n")


def configure_logging():
    """
    Configure loguru as the single log sink.

    Removes the default loguru handler, installs the JSON sink at
    settings.LOG_LEVEL and routes the standard logging module through it.
    """
    logger.remove()

    log_level = settings.LOG_LEVEL

    logger.add(
        json_sink,
        level=log_level,
        backtrace=True,
        diagnose=False,
        filter=context_filter,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Third-party loggers are chatty at DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("clickhouse_connect").setLevel(logging.WARNING)

    logger.info("Logging configured successfully with loguru")


def set_request_id(request_id: str):
    """Set the request_id for the current context (called by middleware)."""
    request_id_var.set(request_id)


def clear_request_id():
    request_id_var.set("-")


def get_request_id() -> str:
    return request_id_var.get()
