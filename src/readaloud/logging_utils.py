#!/usr/bin/env python3
"""
Unified logging utility for ReadAloud components.

Provides setup_logger(name, logfile) to configure a rotating file handler and
console handler with consistent formatting. Idempotent: reuses existing handlers
if already configured for the logger.

Supports both traditional and structured JSON logging.
"""
from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime
from logging.handlers import RotatingFileHandler

_STANDARD_RECORD_KEYS = frozenset({
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'message', 'request_id', 'error_details',
    'taskName',
})


def _level_from_env(default: int) -> int:
    name = os.environ.get("READALOUD_LOG_LEVEL", "").strip().upper()
    if not name:
        return logging.DEBUG if os.environ.get("DEBUG") == "1" else default
    return getattr(logging, name, default)


def setup_logger(name: str, logfile: str, level: int = logging.INFO, structured: bool = False) -> logging.Logger:
    """Create or return a configured logger with rotating file + console handlers.

    Args:
        name: Logger name
        logfile: Log file path
        level: Log level (READALOUD_LOG_LEVEL overrides it)
        structured: Whether to use structured JSON logging
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(_level_from_env(level))

    # Ensure logs directory exists
    try:
        logdir = os.path.dirname(logfile)
        if logdir and not os.path.exists(logdir):
            os.makedirs(logdir, exist_ok=True)
    except OSError:
        pass

    if structured:
        fmt: logging.Formatter = JSONFormatter()
    else:
        fmt = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # File handler
    try:
        fh = RotatingFileHandler(logfile, maxBytes=2_000_000, backupCount=3)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    except OSError:
        # If file handler fails, rely on console handler only
        pass

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    return logger


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def __init__(self, include_request_id: bool = True):
        super().__init__()
        self.include_request_id = include_request_id

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if self.include_request_id and hasattr(record, 'request_id'):
            log_entry['request_id'] = record.request_id

        if getattr(record, 'error_details', None):
            log_entry['error_details'] = record.error_details

        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def log_with_context(logger: logging.Logger, level: int, message: str, **context) -> None:
    """Log message with additional context fields attached to the record"""
    if not logger.isEnabledFor(level):
        return

    request_id = context.pop('request_id', str(uuid.uuid4())[:8])

    record = logger.makeRecord(
        logger.name,
        level,
        fn="",
        lno=0,
        msg=message,
        args=(),
        exc_info=None,
    )
    record.request_id = request_id
    for key, value in context.items():
        setattr(record, key, value)

    logger.handle(record)


__all__ = ["setup_logger", "JSONFormatter", "log_with_context"]
